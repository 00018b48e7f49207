from __future__ import annotations
import typer
from pathlib import Path
from typing import Optional
from rich import print
from loguru import logger
from ..io.loaders import load_config
from ..core.config import SolverConfig
from ..core.pipeline import PlanningRun

app = typer.Typer(no_args_is_help=True, help="consplan: systematic conservation planning with MILP solvers")

def _logging(verbose: bool, quiet: bool) -> None:
    if verbose:
        logger.remove()
        logger.add(lambda m: print(m, end=""), level="DEBUG")
    elif quiet:
        logger.remove()
        logger.add(lambda m: print(m, end=""), level="WARNING")

@app.command("init")
def init_cmd(target: str = typer.Argument("examples/minimal", help="Write an example dataset and config here")):
    import yaml
    from ..io.readers import synthesize_problem_data
    dst = Path(target)
    data_dir = dst / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    data = synthesize_problem_data()
    (data_dir / "pu.csv").write_text(
        "id,cost,status\n" + "".join(f"{u.id},{u.cost[0]},{u.status}\n" for u in data.planning_units))
    (data_dir / "spec.csv").write_text(
        "id,name,prop\n" + "".join(f"{f.id},{f.name},0.2\n" for f in data.features))
    (data_dir / "puvspr.csv").write_text(
        "species,pu,amount\n" + "".join(f"{a.species},{a.pu},{a.amount}\n" for a in data.amounts))
    (data_dir / "bound.csv").write_text(
        "id1,id2,boundary\n" + "".join(f"{b.id1},{b.id2},{b.boundary}\n" for b in data.boundary))
    cfg = {
        "data_path": str(data_dir),
        "data_format": "csv",
        "objective": {"name": "min_set", "params": {}},
        "targets": [{"name": "relative", "params": {"fraction": 0.2}}],
        "penalties": [{"name": "boundary", "params": {"penalty": 0.5, "data": "boundary"}}],
        "solver": {"backend": "auto", "gap": 0.0, "time_limit": 30},
        "run": {"out_dir": str(dst / "runs")},
    }
    (dst / "configs").mkdir(parents=True, exist_ok=True)
    (dst / "configs" / "minimal.yaml").write_text(yaml.safe_dump(cfg, sort_keys=False))
    # Marxan-style input.dat over the same tables
    (data_dir / "input.dat").write_text(
        "INPUTDIR .\nPUNAME pu.csv\nSPECNAME spec.csv\nPUVSPRNAME puvspr.csv\nBOUNDNAME bound.csv\nBLM 0.5\n")
    print(f"[green]Initialized example at {dst}[/green]")

@app.command("solve")
def solve_cmd(config: str = typer.Option(..., "--config", "-c", help="Path to YAML config"),
              verbose: bool = typer.Option(False, "--verbose", "-v", help="DEBUG logging"),
              quiet: bool = typer.Option(False, "--quiet", "-q", help="Only WARN+")):
    cfg = load_config(config)
    if not (verbose or quiet):
        logger.remove()
        logger.add(lambda m: print(m, end=""), level=cfg.run.log_level)
    _logging(verbose, quiet)
    res = PlanningRun(cfg).run()
    sol = res.solution
    print(f"[bold green]Solved[/bold green] status={sol.status} objective={sol.objective_value:.6g} "
          f"units={int(sol.selected().any(axis=1).sum())}", {k: str(v) for k, v in res.outputs.items()})

@app.command("presolve-check")
def presolve_check_cmd(config: str = typer.Option(..., "--config", "-c", help="Path to YAML config"),
                       verbose: bool = typer.Option(False, "--verbose", "-v", help="DEBUG logging"),
                       quiet: bool = typer.Option(False, "--quiet", "-q", help="Only WARN+")):
    from ..models.presolve import presolve_report
    _logging(verbose, quiet)
    cfg = load_config(config)
    problem = PlanningRun(cfg).build_problem()
    issues = presolve_report(problem.compile(), threshold=cfg.presolve.threshold)
    if not issues:
        print("[bold green]No numerical issues found[/bold green]")
        return
    for issue in issues:
        print(f"[yellow]{issue.category}[/yellow]: {issue.message}")
    raise typer.Exit(code=1)

@app.command("marxan")
def marxan_cmd(input_file: str = typer.Argument(..., help="Marxan input.dat"),
               out_dir: str = typer.Option("runs/marxan", "--out", "-o", help="Output directory"),
               gap: float = typer.Option(0.1, "--gap", help="Relative optimality gap"),
               time_limit: Optional[float] = typer.Option(None, "--time-limit", help="Seconds"),
               backend: str = typer.Option("auto", "--backend", "-b", help="auto, gurobi, highs or cbc"),
               verbose: bool = typer.Option(False, "--verbose", "-v", help="DEBUG logging"),
               quiet: bool = typer.Option(False, "--quiet", "-q", help="Only WARN+")):
    from ..io.marxan import marxan_problem
    from ..io.writers import write_solution
    _logging(verbose, quiet)
    problem = marxan_problem(input_file)
    sol = problem.solve(SolverConfig(backend=backend, gap=gap, time_limit=time_limit))
    outputs = write_solution(problem, sol, out_dir)
    print(f"[bold green]Solved Marxan problem[/bold green] status={sol.status} "
          f"objective={sol.objective_value:.6g}", {k: str(v) for k, v in outputs.items()})
