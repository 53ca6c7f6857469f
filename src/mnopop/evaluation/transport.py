"""
Input adapter for the optimal-transport (Kantorovich-Wasserstein) distance.

Builds the coordinates matrix and the weights matrix the external routine
expects: one row per tile, coordinates as (lon, lat), weight columns
ground truth first and then one column per estimate. No distance is
computed here.
"""

import numpy as np
import pandas as pd

GROUND_TRUTH_COLUMN = 'ground_truth'


def to_tile_vector(values, ids, tile_ids):
    """
    Align a per-tile vector to the full tile id space.

    Tiles absent from ``ids`` receive 0.

    Parameters
    ----------
    values : array-like
        Estimate values
    ids : array-like
        Tile id of each value
    tile_ids : array-like of shape (N,)
        Full tile id space, output order

    Returns
    -------
    ndarray of shape (N,)

    Examples
    --------
    >>> to_tile_vector([5.0], [2], [1, 2, 3]).tolist()
    [0.0, 5.0, 0.0]
    """
    values = np.asarray(values, dtype=float)
    ids = np.asarray(ids)
    if values.shape != ids.shape:
        raise ValueError(f"values shape {values.shape} must match ids shape {ids.shape}")
    series = pd.Series(values, index=ids)
    if series.index.duplicated().any():
        raise ValueError("ids contain duplicates")
    unknown = ~np.isin(ids, np.asarray(tile_ids))
    if np.any(unknown):
        raise ValueError(f"ids not in the tile id space: {ids[unknown].tolist()[:10]}")
    return series.reindex(np.asarray(tile_ids), fill_value=0.0).to_numpy(dtype=float)


def _as_tile_series(values, tile_ids, name):
    if isinstance(values, pd.Series):
        return pd.Series(to_tile_vector(values.to_numpy(), values.index.to_numpy(), tile_ids),
                         index=tile_ids)
    values = np.asarray(values, dtype=float)
    if values.shape != (len(tile_ids),):
        raise ValueError(f"{name} shape {values.shape} must be ({len(tile_ids)},)")
    return pd.Series(values, index=tile_ids)


def transport_inputs_to_frame(centroids, ground_truth, estimates):
    """
    Transport inputs as a DataFrame indexed by tile id.

    Parameters
    ----------
    centroids : DataFrame
        Indexed by tile id, with columns 'lon' and 'lat'
    ground_truth : Series or array-like
        True population per tile (Series indexed by tile id, or an array
        aligned with ``centroids``)
    estimates : dict of str -> Series or array-like
        Estimates by column name, same alignment rules as ground_truth

    Returns
    -------
    DataFrame
        Columns lon, lat, ground_truth, then one column per estimate
    """
    missing = {'lon', 'lat'} - set(centroids.columns)
    if missing:
        raise ValueError(f"centroids missing columns: {sorted(missing)}")
    if centroids.index.duplicated().any():
        raise ValueError("centroids index contains duplicate tile ids")
    if GROUND_TRUTH_COLUMN in estimates:
        raise ValueError(f"estimate name '{GROUND_TRUTH_COLUMN}' is reserved")

    tile_ids = centroids.index.to_numpy()
    frame = centroids[['lon', 'lat']].astype(float).copy()
    frame[GROUND_TRUTH_COLUMN] = _as_tile_series(ground_truth, tile_ids, 'ground_truth').to_numpy()
    for name, values in estimates.items():
        frame[name] = _as_tile_series(values, tile_ids, name).to_numpy()
    frame.index.name = 'tile'
    return frame


def build_transport_inputs(centroids, ground_truth, estimates):
    """
    Coordinates and weights matrices for the transport routine.

    Returns
    -------
    coords : ndarray of shape (N, 2)
        (lon, lat) per tile
    weights : ndarray of shape (N, 1 + len(estimates))
        Ground truth column first, then estimates in the given order
    names : list of str
        Weight column names

    Examples
    --------
    >>> import pandas as pd
    >>> centroids = pd.DataFrame({'lon': [0.0, 1.0], 'lat': [0.0, 0.0]}, index=[1, 2])
    >>> coords, weights, names = build_transport_inputs(centroids, [1.0, 2.0], {'em': [1.5, 1.5]})
    >>> names
    ['ground_truth', 'em']
    """
    frame = transport_inputs_to_frame(centroids, ground_truth, estimates)
    names = [GROUND_TRUTH_COLUMN] + list(estimates)
    return frame[['lon', 'lat']].to_numpy(), frame[names].to_numpy(), names
