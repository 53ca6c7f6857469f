"""
Observation model: sparse connection-likelihood matrix and cell counts.

The model links tiles to cells through connection weights:

- dominance d[j, i] in [0, 1]: logistic transform of the signal level of
  cell i at tile j
- weight    P[i, j] = d[j, i] / sum_k d[j, k]   (normalized per tile)

Links with dominance below the threshold tau are dropped AFTER
normalization, so a tile's weights may sum to less than one (the residual
mass is dropped, not re-distributed) unless ``renormalize=True`` is
requested explicitly.

P is stored as a ``scipy.sparse.csr_matrix`` of shape (n_cells, n_tiles)
so that the expected cell counts are ``P @ u``.
"""

import warnings
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from scipy import sparse

from .mismatch import MismatchSpec, perturb_signal, perturb_dominance
from ..utils.conversions import signal_to_dominance, DEFAULT_MIDPOINT, DEFAULT_STEEPNESS
from ..utils.errors import DataInconsistencyError, UncoveredTileWarning

LINK_COLUMNS = ['tile', 'cell', 'dominance', 'weight']


@dataclass
class ObservationModel:
    """
    Sparse observation model of one network under one mismatch level.

    Attributes
    ----------
    tile_ids : ndarray of shape (N,)
        Tile ids, column order of ``P``
    cell_ids : ndarray of shape (M,)
        Cell ids, row order of ``P`` and ``counts``
    P : scipy.sparse.csr_matrix of shape (M, N)
        Connection weights, cells by tiles
    counts : ndarray of shape (M,)
        Observed device count per cell
    links : DataFrame
        Surviving links with columns tile, cell, dominance, weight
    threshold : float
        Minimum dominance used to filter links
    uncovered_tiles : ndarray
        Ids of tiles whose maximum dominance is below the threshold
    mismatch : MismatchSpec
        Transform applied to the inputs
    """
    tile_ids: np.ndarray
    cell_ids: np.ndarray
    P: sparse.csr_matrix
    counts: np.ndarray
    links: pd.DataFrame
    threshold: float = 0.0
    uncovered_tiles: np.ndarray = field(default_factory=lambda: np.array([], dtype=int))
    mismatch: MismatchSpec = field(default_factory=MismatchSpec)

    @property
    def n_tiles(self):
        return len(self.tile_ids)

    @property
    def n_cells(self):
        return len(self.cell_ids)

    @property
    def total_count(self):
        return float(self.counts.sum())

    @property
    def coverage_mask(self):
        """Boolean mask over tiles, False for uncovered tiles."""
        return ~np.isin(self.tile_ids, self.uncovered_tiles)

    @property
    def incoming_weight(self):
        """Total connection weight arriving at each cell."""
        return np.asarray(self.P.sum(axis=1)).ravel()

    def reachable_tiles(self):
        """Boolean mask of tiles linked to at least one cell with a positive count."""
        positive = (self.counts > 0).astype(float)
        return np.asarray(self.P.T @ positive).ravel() > 0

    def validate_counts(self):
        """
        Check that every cell with a positive count receives some weight.

        Raises
        ------
        DataInconsistencyError
            Listing the cells with c > 0 and zero incoming weight
        """
        bad = (self.counts > 0) & (self.incoming_weight <= 0)
        if np.any(bad):
            bad_cells = self.cell_ids[bad]
            raise DataInconsistencyError(
                f"{len(bad_cells)} cell(s) with positive count have zero incoming weight: "
                f"{bad_cells.tolist()[:10]}",
                cell_ids=bad_cells
            )


def apply_dominance_threshold(links, threshold):
    """
    Drop links with dominance below ``threshold``.

    Re-applying the filter with the same threshold is a no-op.

    Parameters
    ----------
    links : DataFrame
        Link table with a 'dominance' column
    threshold : float
        Minimum dominance

    Returns
    -------
    DataFrame
        Filtered copy with a fresh index
    """
    return links.loc[links['dominance'] >= threshold].reset_index(drop=True)


def find_uncovered_tiles(links, tile_ids, threshold):
    """
    Tiles whose maximum dominance over all cells falls below ``threshold``.

    Tiles without any link are uncovered as well.
    """
    max_dominance = links.groupby('tile')['dominance'].max()
    max_dominance = max_dominance.reindex(tile_ids, fill_value=0.0)
    return np.asarray(tile_ids)[max_dominance.to_numpy() < threshold]


def _as_count_series(counts):
    """Coerce dict / Series / (cell, count) DataFrame to a Series indexed by cell."""
    if isinstance(counts, pd.DataFrame):
        if not {'cell', 'count'}.issubset(counts.columns):
            raise ValueError("counts DataFrame must have columns 'cell' and 'count'")
        counts = counts.set_index('cell')['count']
    elif isinstance(counts, dict):
        counts = pd.Series(counts)
    elif not isinstance(counts, pd.Series):
        raise ValueError(f"counts must be a Series, dict or DataFrame, got {type(counts).__name__}")
    return counts.astype(float)


def _link_parameters(links, cells, midpoint, steepness):
    """Logistic parameters for every link row, from the cell table or defaults."""
    if cells is None:
        return (np.full(len(links), float(midpoint)), np.full(len(links), float(steepness)))
    params = cells.set_index('cell')
    mid = params['midpoint'] if 'midpoint' in params else pd.Series(dtype=float)
    steep = params['steepness'] if 'steepness' in params else pd.Series(dtype=float)
    mid = links['cell'].map(mid).fillna(midpoint).to_numpy(dtype=float)
    steep = links['cell'].map(steep).fillna(steepness).to_numpy(dtype=float)
    return mid, steep


def _assemble(links, tile_ids, cell_ids, counts, threshold, uncovered, mismatch):
    """Build the sparse matrix and aligned count vector from a filtered link table."""
    tile_index = pd.Index(tile_ids)
    cell_index = pd.Index(cell_ids)

    cols = tile_index.get_indexer(links['tile'])
    rows = cell_index.get_indexer(links['cell'])
    P = sparse.csr_matrix(
        (links['weight'].to_numpy(dtype=float), (rows, cols)),
        shape=(len(cell_index), len(tile_index))
    )

    counts = _as_count_series(counts)
    unknown = counts.index.difference(cell_index)
    if len(unknown) > 0:
        raise ValueError(f"counts reference {len(unknown)} unknown cell(s): {unknown.tolist()[:10]}")
    c = counts.reindex(cell_index, fill_value=0.0).to_numpy(dtype=float)
    if np.any(c < 0) or not np.all(np.isfinite(c)):
        raise ValueError("counts must be finite and non-negative")

    return ObservationModel(
        tile_ids=np.asarray(tile_ids),
        cell_ids=np.asarray(cell_ids),
        P=P,
        counts=c,
        links=links[LINK_COLUMNS].reset_index(drop=True),
        threshold=threshold,
        uncovered_tiles=np.asarray(uncovered),
        mismatch=mismatch,
    )


def build_observation_model(links, counts, tile_ids=None, cells=None, threshold=0.05,
                            mismatch=None, seed=None, renormalize=False,
                            midpoint=DEFAULT_MIDPOINT, steepness=DEFAULT_STEEPNESS,
                            verbose=True):
    """
    Build the sparse observation model from per-link signal measurements.

    Parameters
    ----------
    links : DataFrame
        One row per (tile, cell) pair with columns 'tile', 'cell' and either
        'dominance' or 'signal' (dBm), or both. Must contain ALL pairs, not a
        pre-filtered subset, since the mismatch transform is applied before
        threshold filtering.
    counts : Series, dict or DataFrame
        Observed count per cell id (missing cells count 0)
    tile_ids : array-like, optional
        Full tile id space. Default: the tiles present in ``links``.
    cells : DataFrame, optional
        Cell table with columns 'cell', 'midpoint', 'steepness'
    threshold : float, optional
        Minimum dominance tau, default: 0.05
    mismatch : MismatchSpec, optional
        Model-mismatch transform, default: the true model
    seed : int, optional
        Seed for noise injection
    renormalize : bool, optional
        Re-normalize surviving weights per tile to sum to one, default: False
    midpoint, steepness : float, optional
        Logistic parameters for cells absent from ``cells``
    verbose : bool, optional
        Print progress information, default: True

    Returns
    -------
    ObservationModel

    Raises
    ------
    ValueError
        On malformed input (missing columns, unknown tiles or cells,
        negative counts)

    Warns
    -----
    UncoveredTileWarning
        If some tiles never reach the dominance threshold. Such tiles are
        kept in the tile space and reported in ``uncovered_tiles``.
    """
    mismatch = (mismatch or MismatchSpec()).normalized()

    if not {'tile', 'cell'}.issubset(links.columns):
        raise ValueError("links must have columns 'tile' and 'cell'")
    if 'dominance' not in links.columns and 'signal' not in links.columns:
        raise ValueError("links must have a 'dominance' or a 'signal' column")
    if links.duplicated(['tile', 'cell']).any():
        raise ValueError("links contain duplicate (tile, cell) pairs")

    links = links.reset_index(drop=True).copy()
    mid, steep = _link_parameters(links, cells, midpoint, steepness)

    if mismatch.is_true and 'dominance' in links.columns:
        dominance = links['dominance'].to_numpy(dtype=float)
    elif 'signal' in links.columns:
        signal = perturb_signal(links['signal'].to_numpy(dtype=float), mismatch, seed=seed)
        dominance = signal_to_dominance(signal, mid, steep)
    else:
        dominance = perturb_dominance(links['dominance'].to_numpy(dtype=float), mismatch,
                                      midpoint=mid, steepness=steep, seed=seed)
    if np.any(dominance < 0) or np.any(dominance > 1):
        raise ValueError("dominance values must lie in [0, 1]")
    links['dominance'] = dominance

    tile_totals = links.groupby('tile')['dominance'].transform('sum').to_numpy()
    with np.errstate(invalid='ignore', divide='ignore'):
        links['weight'] = np.where(tile_totals > 0, dominance / tile_totals, 0.0)

    if tile_ids is None:
        tile_ids = np.sort(links['tile'].unique())
    tile_ids = np.asarray(tile_ids)
    unknown_tiles = np.setdiff1d(links['tile'].unique(), tile_ids)
    if len(unknown_tiles) > 0:
        raise ValueError(f"links reference {len(unknown_tiles)} unknown tile(s): {unknown_tiles.tolist()[:10]}")

    cell_ids = links['cell'].unique()
    if cells is not None:
        cell_ids = np.union1d(cell_ids, cells['cell'].unique())
    cell_ids = np.sort(cell_ids)

    if verbose:
        print(f"\n{'='*60}")
        print(f"Observation Model Builder")
        print(f"{'='*60}")
        print(f"Tiles: {len(tile_ids)}, cells: {len(cell_ids)}, links: {len(links)}")
        print(f"Mismatch: {mismatch.label()}, threshold tau = {threshold}")

    uncovered = find_uncovered_tiles(links, tile_ids, threshold)
    filtered = apply_dominance_threshold(links, threshold)

    if renormalize and len(filtered) > 0:
        kept_totals = filtered.groupby('tile')['weight'].transform('sum').to_numpy()
        kept = filtered['weight'].to_numpy()
        with np.errstate(invalid='ignore', divide='ignore'):
            filtered['weight'] = np.where(kept_totals > 0, kept / kept_totals, 0.0)

    if len(uncovered) > 0:
        warnings.warn(
            f"{len(uncovered)} of {len(tile_ids)} tile(s) never reach dominance {threshold}; "
            f"their estimates are unreliable",
            UncoveredTileWarning
        )

    model = _assemble(filtered, tile_ids, cell_ids, counts, threshold, uncovered, mismatch)

    if verbose:
        print(f"  Links kept: {len(filtered)} ({len(links) - len(filtered)} dropped below tau)")
        print(f"  Uncovered tiles: {len(uncovered)}")
        print(f"  Total count: {model.total_count:.0f}")

    return model


def observation_model_from_matrix(P, counts, tile_ids=None, cell_ids=None, threshold=0.0):
    """
    Build an observation model from a tile-by-cell weight matrix.

    The weights are used as given (no normalization). Useful for synthetic
    worlds with hand-computed weights.

    Parameters
    ----------
    P : array-like or sparse matrix of shape (N, M)
        Connection weights, tiles by cells
    counts : array-like of shape (M,)
        Observed count per cell
    tile_ids : array-like of shape (N,), optional
        Default: 1..N
    cell_ids : array-like of shape (M,), optional
        Default: 1..M
    threshold : float, optional
        Links with weight below this value are dropped, default: 0

    Returns
    -------
    ObservationModel

    Examples
    --------
    >>> model = observation_model_from_matrix([[0.6, 0.4], [0.3, 0.7]], [10, 10])
    >>> model.P.shape
    (2, 2)
    """
    P = sparse.coo_matrix(P)
    n_tiles, n_cells = P.shape
    tile_ids = np.arange(1, n_tiles + 1) if tile_ids is None else np.asarray(tile_ids)
    cell_ids = np.arange(1, n_cells + 1) if cell_ids is None else np.asarray(cell_ids)

    counts = np.asarray(counts, dtype=float)
    if counts.shape != (n_cells,):
        raise ValueError(f"counts shape {counts.shape} must be ({n_cells},)")

    links = pd.DataFrame({
        'tile': tile_ids[P.row],
        'cell': cell_ids[P.col],
        'dominance': P.data.astype(float),
        'weight': P.data.astype(float),
    })
    links = links.loc[links['weight'] > 0]
    uncovered = find_uncovered_tiles(links, tile_ids, threshold if threshold > 0 else np.finfo(float).tiny)
    links = apply_dominance_threshold(links, threshold)

    return _assemble(links, tile_ids, cell_ids, pd.Series(counts, index=cell_ids),
                     threshold, uncovered, MismatchSpec())
