"""
Supertile aggregation and disaggregation.

Tiles are partitioned into coarser supertiles to shrink the number of
decision variables of expensive solvers. With S the tile-by-supertile
membership indicator (N x K), the aggregated model is

    P_super = P @ S            (how='sum', combined dominance of the group)
    P_super = P @ S @ diag(1/n) (how='mean')

Disaggregation splits each supertile estimate into equal shares over its
member tiles. This uniform split is the current policy; it does not
redistribute according to any finer signal and is an approximation.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import sparse

from .model import _assemble


@dataclass
class SupertileMapping:
    """
    Total, disjoint partition of tiles into supertiles.

    Attributes
    ----------
    tile_ids : ndarray of shape (N,)
        Tile ids in model order
    supertile_ids : ndarray of shape (K,)
        Sorted unique supertile ids
    membership : ndarray of shape (N,)
        Position in ``supertile_ids`` of each tile's supertile
    """
    tile_ids: np.ndarray
    supertile_ids: np.ndarray
    membership: np.ndarray

    @property
    def n_supertiles(self):
        return len(self.supertile_ids)

    @property
    def n_members(self):
        return np.bincount(self.membership, minlength=self.n_supertiles)

    def members(self, supertile_id):
        """Tile ids belonging to ``supertile_id``, in model order."""
        position = np.searchsorted(self.supertile_ids, supertile_id)
        if position >= self.n_supertiles or self.supertile_ids[position] != supertile_id:
            raise KeyError(f"Unknown supertile id: {supertile_id}")
        return self.tile_ids[self.membership == position]

    def indicator(self):
        """Sparse tile-by-supertile 0/1 matrix."""
        n = len(self.tile_ids)
        return sparse.csr_matrix(
            (np.ones(n), (np.arange(n), self.membership)),
            shape=(n, self.n_supertiles)
        )


def make_supertile_mapping(tile_ids, supertile_of):
    """
    Validate a tile-to-supertile assignment and build the mapping.

    Parameters
    ----------
    tile_ids : array-like of shape (N,)
        Full tile id space
    supertile_of : Series, dict or array-like
        Supertile id per tile. A Series/dict is looked up by tile id; an
        array is taken to be aligned with ``tile_ids``.

    Returns
    -------
    SupertileMapping

    Raises
    ------
    ValueError
        If a tile has no supertile (partition not total) or a tile is
        assigned twice (partition not disjoint)
    """
    tile_ids = np.asarray(tile_ids)
    if isinstance(supertile_of, dict):
        supertile_of = pd.Series(supertile_of)

    if isinstance(supertile_of, pd.Series):
        if supertile_of.index.duplicated().any():
            dup = supertile_of.index[supertile_of.index.duplicated()].unique()
            raise ValueError(f"{len(dup)} tile(s) assigned to more than one supertile: {dup.tolist()[:10]}")
        assigned = supertile_of.reindex(tile_ids)
    else:
        assigned = pd.Series(np.asarray(supertile_of), index=tile_ids)
        if len(assigned) != len(tile_ids):
            raise ValueError(f"supertile_of length {len(assigned)} must equal number of tiles {len(tile_ids)}")

    missing = assigned.isna().to_numpy()
    if np.any(missing):
        raise ValueError(
            f"{missing.sum()} tile(s) do not belong to any supertile: {tile_ids[missing].tolist()[:10]}"
        )

    supertile_ids, membership = np.unique(assigned.to_numpy(), return_inverse=True)
    return SupertileMapping(tile_ids=tile_ids, supertile_ids=supertile_ids,
                            membership=membership.ravel())


def block_supertiles(rows, cols, block_size):
    """
    Group grid tiles into square blocks.

    Parameters
    ----------
    rows, cols : array-like of shape (N,)
        Grid row and column of each tile
    block_size : int
        Side of a block in tiles

    Returns
    -------
    ndarray of shape (N,)
        Supertile id (1-based, row-major over blocks) of each tile

    Examples
    --------
    >>> block_supertiles([0, 0, 1, 1], [0, 1, 0, 1], 2).tolist()
    [1, 1, 1, 1]
    """
    if block_size < 1:
        raise ValueError(f"block_size must be >= 1, got {block_size}")
    rows = np.asarray(rows, dtype=int)
    cols = np.asarray(cols, dtype=int)
    n_block_cols = cols.max() // block_size + 1
    return (rows // block_size) * n_block_cols + cols // block_size + 1


def aggregate(model, supertile_of, how='sum'):
    """
    Aggregate an observation model to supertiles.

    Parameters
    ----------
    model : ObservationModel
        Tile-level model
    supertile_of : Series, dict, array-like or SupertileMapping
        Tile-to-supertile assignment
    how : {'sum', 'mean'}, optional
        'sum' adds the weights of member tiles linked to the same cell;
        'mean' divides the sum by the number of members. Default: 'sum'

    Returns
    -------
    super_model : ObservationModel
        Model whose "tiles" are supertiles; a supertile is uncovered when
        all of its members are
    mapping : SupertileMapping
    """
    if how not in ('sum', 'mean'):
        raise ValueError(f"how must be 'sum' or 'mean', got {how!r}")

    if isinstance(supertile_of, SupertileMapping):
        mapping = supertile_of
        if not np.array_equal(mapping.tile_ids, model.tile_ids):
            raise ValueError("SupertileMapping tile ids do not match the model")
    else:
        mapping = make_supertile_mapping(model.tile_ids, supertile_of)

    tile_to_super = pd.Series(mapping.supertile_ids[mapping.membership], index=mapping.tile_ids)
    links = model.links.copy()
    links['tile'] = links['tile'].map(tile_to_super)
    links = links.groupby(['tile', 'cell'], as_index=False)[['dominance', 'weight']].sum()

    if how == 'mean':
        n_members = pd.Series(mapping.n_members, index=mapping.supertile_ids)
        divisor = links['tile'].map(n_members).to_numpy(dtype=float)
        links['dominance'] = links['dominance'] / divisor
        links['weight'] = links['weight'] / divisor

    covered = model.coverage_mask.astype(float)
    covered_members = np.bincount(mapping.membership, weights=covered, minlength=mapping.n_supertiles)
    uncovered = mapping.supertile_ids[covered_members == 0]

    super_model = _assemble(
        links, mapping.supertile_ids, model.cell_ids,
        pd.Series(model.counts, index=model.cell_ids),
        model.threshold, uncovered, model.mismatch
    )
    return super_model, mapping


def aggregate_prior(prior, mapping):
    """Sum a tile-level prior over the members of each supertile."""
    prior = np.asarray(prior, dtype=float)
    if prior.shape != (len(mapping.tile_ids),):
        raise ValueError(f"prior shape {prior.shape} must be ({len(mapping.tile_ids)},)")
    return np.bincount(mapping.membership, weights=prior, minlength=mapping.n_supertiles)


def disaggregate(u_super, mapping):
    """
    Split supertile estimates uniformly across member tiles.

    Each member receives an equal share ``u_super[k] / n_members[k]``; the
    total is preserved.

    Parameters
    ----------
    u_super : array-like of shape (K,)
        Supertile estimate
    mapping : SupertileMapping

    Returns
    -------
    ndarray of shape (N,)
        Tile estimate in ``mapping.tile_ids`` order
    """
    u_super = np.asarray(u_super, dtype=float)
    if u_super.shape != (mapping.n_supertiles,):
        raise ValueError(f"u_super shape {u_super.shape} must be ({mapping.n_supertiles},)")
    n_members = mapping.n_members
    return u_super[mapping.membership] / n_members[mapping.membership]
