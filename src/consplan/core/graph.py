
from __future__ import annotations
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components as _cc
from scipy.spatial import cKDTree
from loguru import logger

from .errors import InvalidParameterLength, InvalidParameterRange

RelationData = Union[np.ndarray, sp.spmatrix, Iterable[Tuple[int, int, float]]]

_SHARED_EDGE_TOL = 1e-12


def _csr(m) -> sp.csr_matrix:
    """CSR copy with explicit zeros removed so that absent == no relation."""
    out = sp.csr_matrix(m, dtype=float, copy=True)
    out.eliminate_zeros()
    out.sort_indices()
    return out


def relation_matrix(
    data: RelationData,
    n: int,
    *,
    symmetric: bool = True,
    allow_negative: bool = False,
    name: str = "relation",
) -> sp.csr_matrix:
    """Coerce user data into an (n x n) sparse relation matrix.

    Accepts a dense array, any scipy sparse matrix, or an iterable of
    (i, j, value) triplets with 0-based indices. Triplets are mirrored onto
    (j, i); an (i, i) triplet sets the diagonal. Zero-valued entries are
    dropped from the result.
    """
    if sp.issparse(data) or isinstance(data, np.ndarray):
        if data.shape != (n, n):
            raise InvalidParameterLength(f"{name} matrix must be {n}x{n}, got {data.shape[0]}x{data.shape[1]}")
        m = _csr(data)
    else:
        # a pair listed in both directions keeps the last value seen
        entries = {}
        for i, j, v in data:
            i, j = int(i), int(j)
            if not (0 <= i < n and 0 <= j < n):
                raise InvalidParameterLength(f"{name} entry ({i}, {j}) outside 0..{n - 1}")
            entries[(i, j)] = float(v)
            entries[(j, i)] = float(v)
        keys = sorted(entries)
        rows = [k[0] for k in keys]
        cols = [k[1] for k in keys]
        vals = [entries[k] for k in keys]
        m = _csr(sp.coo_matrix((vals, (rows, cols)), shape=(n, n)))
    if m.nnz and not np.all(np.isfinite(m.data)):
        raise InvalidParameterRange(f"{name} matrix contains non-finite values")
    if not allow_negative and m.nnz and m.data.min() < 0:
        raise InvalidParameterRange(f"{name} matrix contains negative values")
    if symmetric and abs(m - m.T).nnz:
        diff = abs(m - m.T)
        if diff.max() > 1e-10 * max(1.0, abs(m).max()):
            raise InvalidParameterRange(f"{name} matrix must be symmetric")
    return m


def boundary_matrix_from_grid(
    n_rows: int,
    n_cols: int,
    cell_width: float = 1.0,
    cell_height: float = 1.0,
) -> sp.csr_matrix:
    """Shared edge lengths for a raster of n_rows x n_cols cells (row-major ids).

    Horizontal neighbours share an edge of length `cell_height`, vertical
    neighbours one of length `cell_width`. The diagonal holds the length of
    each cell's perimeter that is not shared with another cell.
    """
    if n_rows < 1 or n_cols < 1:
        raise InvalidParameterRange("grid must have at least one row and one column")
    n = n_rows * n_cols
    ids = np.arange(n).reshape(n_rows, n_cols)
    rows, cols, vals = [], [], []
    # east-west neighbours
    a, b = ids[:, :-1].ravel(), ids[:, 1:].ravel()
    rows += [a, b]
    cols += [b, a]
    vals += [np.full(a.size, cell_height)] * 2
    # north-south neighbours
    a, b = ids[:-1, :].ravel(), ids[1:, :].ravel()
    rows += [a, b]
    cols += [b, a]
    vals += [np.full(a.size, cell_width)] * 2
    shared = sp.coo_matrix(
        (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))), shape=(n, n)
    ).tocsr()
    perimeter = 2.0 * (cell_width + cell_height)
    exposed = perimeter - np.asarray(shared.sum(axis=1)).ravel()
    m = _csr(shared + sp.diags(exposed))
    logger.debug("Grid boundary matrix: {}x{} cells, {} stored entries", n_rows, n_cols, m.nnz)
    return m


def adjacency_matrix_from_grid(n_rows: int, n_cols: int, directions: int = 4) -> sp.csr_matrix:
    """0/1 adjacency between raster cells (rook for 4, queen for 8)."""
    if directions not in (4, 8):
        raise InvalidParameterRange(f"directions must be 4 or 8, got {directions}")
    n = n_rows * n_cols
    ids = np.arange(n).reshape(n_rows, n_cols)
    offsets = [(0, 1), (1, 0)]
    if directions == 8:
        offsets += [(1, 1), (1, -1)]
    rows, cols = [], []
    for dr, dc in offsets:
        r0, r1 = 0, n_rows - dr
        c0, c1 = max(0, -dc), n_cols - max(0, dc)
        a = ids[r0:r1, c0:c1].ravel()
        b = ids[r0 + dr:r1 + dr, c0 + dc:c1 + dc].ravel()
        rows += [a, b]
        cols += [b, a]
    if not rows:
        return sp.csr_matrix((n, n))
    r, c = np.concatenate(rows), np.concatenate(cols)
    return _csr(sp.coo_matrix((np.ones(r.size), (r, c)), shape=(n, n)))


def boundary_matrix_from_polygons(polygons: Sequence) -> sp.csr_matrix:
    """Shared boundary length between shapely polygons.

    Candidate pairs come from an STRtree query; pairs whose boundaries only
    touch at a point have zero shared length and are not stored. The diagonal
    holds each polygon's exposed perimeter.
    """
    from shapely import STRtree

    polys = list(polygons)
    n = len(polys)
    tree = STRtree(polys)
    rows, cols, vals = [], [], []
    for i, poly in enumerate(polys):
        for j in tree.query(poly):
            j = int(j)
            if j <= i:
                continue
            length = poly.boundary.intersection(polys[j].boundary).length
            if length > _SHARED_EDGE_TOL:
                rows += [i, j]
                cols += [j, i]
                vals += [length, length]
    shared = sp.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()
    perimeter = np.array([p.length for p in polys], dtype=float)
    exposed = np.clip(perimeter - np.asarray(shared.sum(axis=1)).ravel(), 0.0, None)
    exposed[exposed < _SHARED_EDGE_TOL] = 0.0
    m = _csr(shared + sp.diags(exposed))
    logger.debug("Polygon boundary matrix: {} units, {} stored entries", n, m.nnz)
    return m


def knn_matrix(coordinates, k: int) -> sp.csr_matrix:
    """Symmetric 0/1 relation linking each unit to its k nearest neighbours."""
    pts = np.asarray(coordinates, dtype=float)
    if pts.ndim != 2:
        raise InvalidParameterLength("coordinates must be a 2-D array of points")
    n = pts.shape[0]
    if not (1 <= k < n):
        raise InvalidParameterRange(f"k must be in [1, {n - 1}], got {k}")
    _, idx = cKDTree(pts).query(pts, k=k + 1)
    rows = np.repeat(np.arange(n), k)
    cols = idx[:, 1:].ravel()
    m = sp.coo_matrix((np.ones(rows.size), (rows, cols)), shape=(n, n)).tocsr()
    m = m.maximum(m.T)
    return _csr(m)


def off_diagonal(m: sp.spmatrix) -> sp.csr_matrix:
    m = sp.csr_matrix(m, dtype=float)
    return _csr(m - sp.diags(m.diagonal()))


def exposed_boundary(m: sp.spmatrix) -> np.ndarray:
    return np.asarray(m.diagonal(), dtype=float)


def connected_components(m: sp.spmatrix, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """Component label per unit in the subgraph induced by `mask`.

    Units outside the mask get -1. Only stored off-diagonal entries count as
    edges.
    """
    n = m.shape[0]
    keep = np.ones(n, dtype=bool) if mask is None else np.asarray(mask, dtype=bool)
    labels = np.full(n, -1, dtype=int)
    idx = np.flatnonzero(keep)
    if idx.size == 0:
        return labels
    sub = off_diagonal(m)[idx][:, idx]
    _, sub_labels = _cc(sub, directed=False)
    labels[idx] = sub_labels
    return labels


def is_contiguous(m: sp.spmatrix, mask: np.ndarray) -> bool:
    labels = connected_components(m, mask)
    present = labels[labels >= 0]
    return present.size == 0 or np.unique(present).size == 1
