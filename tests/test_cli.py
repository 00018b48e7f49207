"""
Tests for the typer command line.

Run with: python -m pytest tests/test_cli.py -v
"""

from typer.testing import CliRunner

from conftest import requires_highs
from consplan.cli.commands import app
from consplan.io.loaders import load_config, load_problem_data


runner = CliRunner()


class TestInit:
    """`consplan init` writes a runnable example."""

    def test_init_writes_files(self, tmp_path):
        target = tmp_path / "example"
        result = runner.invoke(app, ["init", str(target)])
        assert result.exit_code == 0, result.output
        for name in ("pu.csv", "spec.csv", "puvspr.csv", "bound.csv", "input.dat"):
            assert (target / "data" / name).exists()
        cfg = load_config(target / "configs" / "minimal.yaml")
        data = load_problem_data(cfg)
        assert len(data.planning_units) == 90

    def test_presolve_check_passes(self, tmp_path):
        target = tmp_path / "example"
        runner.invoke(app, ["init", str(target)])
        result = runner.invoke(app, ["presolve-check", "-c", str(target / "configs" / "minimal.yaml"), "-q"])
        assert result.exit_code == 0, result.output
        assert "No numerical issues" in result.output


@requires_highs
class TestSolveCommands:
    """Commands that run a solver."""

    def test_solve(self, tmp_path):
        target = tmp_path / "example"
        runner.invoke(app, ["init", str(target)])
        result = runner.invoke(app, ["solve", "-c", str(target / "configs" / "minimal.yaml"), "-q"])
        assert result.exit_code == 0, result.output
        assert (target / "runs" / "solution.csv").exists()

    def test_marxan(self, tmp_path):
        target = tmp_path / "example"
        runner.invoke(app, ["init", str(target)])
        out = tmp_path / "marxan_out"
        result = runner.invoke(app, ["marxan", str(target / "data" / "input.dat"), "-o", str(out),
                                     "--backend", "highs", "-q"])
        assert result.exit_code == 0, result.output
        assert (out / "summary.yaml").exists()
