"""CSV/NPZ I/O: summary rows of a sweep and the estimate vectors behind them."""

from pathlib import Path
from typing import List

import numpy as np
import pandas as pd

# Desired column order for results CSV
DESIRED_COLUMN_ORDER = [
    'record', 'network', 'estimator', 'mismatch_kind', 'mismatch_level', 'prior', 'iteration',
    'status', 'solver_status', 'error_kind', 'error',
    'converged', 'monotone', 'checkpoint_reached', 'loglik', 'mass_error', 'n_uncovered',
]


def records_to_frame(records) -> pd.DataFrame:
    """
    Summary table of sweep records.

    The 'record' column is the position of each record, which is also its
    row in the array written by :func:`save_estimates`.
    """
    rows = [dict(record=i, **r.summary()) for i, r in enumerate(records)]
    df = pd.DataFrame(rows)
    if df.empty:
        return pd.DataFrame(columns=DESIRED_COLUMN_ORDER)

    # Reorder columns to ensure consistent header
    ordered_cols = [col for col in DESIRED_COLUMN_ORDER if col in df.columns]
    ordered_cols += [col for col in df.columns if col not in ordered_cols]
    return df[ordered_cols]


def append_records_to_csv(records: List, output_dir: Path, filename='estimates.csv'):
    """
    Append a batch of records to the results CSV file.
    Handles header creation if file doesn't exist.

    Returns
    -------
    Path or None
        CSV path, None when there is nothing to write
    """
    if not records:
        return None

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    csv_path = output_dir / filename
    df = records_to_frame(records)

    # Check if file exists to determine if header is needed
    file_exists = csv_path.exists()
    df.to_csv(csv_path, mode='a', header=not file_exists, index=False)
    return csv_path


def save_estimates(records, tile_ids, path):
    """
    Save the estimate vectors of ``records`` with ``numpy.savez_compressed``.

    Row i of the 'estimates' array belongs to record i; failed records are
    stored as rows of NaN. The boolean 'reliable' array of the same shape
    is False for uncovered tiles and for every tile of a failed record.
    """
    tile_ids = np.asarray(tile_ids)
    estimates = np.full((len(records), len(tile_ids)), np.nan)
    reliable = np.zeros((len(records), len(tile_ids)), dtype=bool)
    for i, record in enumerate(records):
        if record.estimate is not None:
            estimates[i] = record.estimate
            reliable[i] = True if record.uncovered is None else ~np.asarray(record.uncovered, dtype=bool)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(path, tile_ids=tile_ids, estimates=estimates, reliable=reliable)
    return path


def load_estimates(path, with_reliability=False):
    """
    Load an estimates file written by :func:`save_estimates`.

    Returns
    -------
    tile_ids : ndarray
    estimates : ndarray of shape (n_records, n_tiles)
    reliable : ndarray of shape (n_records, n_tiles)
        Only returned when ``with_reliability`` is True
    """
    with np.load(path) as data:
        if with_reliability:
            return data['tile_ids'], data['estimates'], data['reliable']
        return data['tile_ids'], data['estimates']
