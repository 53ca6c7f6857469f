"""
Estimation sweeps over networks, mismatch levels, priors and estimators.
"""

from .jobs import NetworkInputs, EstimationJob, make_jobs, ESTIMATORS
from .sweep import EstimateRecord, run_job, run_sweep
from .results_io import (
    records_to_frame,
    append_records_to_csv,
    save_estimates,
    load_estimates,
    DESIRED_COLUMN_ORDER,
)

__all__ = [
    # Jobs
    'NetworkInputs',
    'EstimationJob',
    'make_jobs',
    'ESTIMATORS',

    # Runner
    'EstimateRecord',
    'run_job',
    'run_sweep',

    # I/O
    'records_to_frame',
    'append_records_to_csv',
    'save_estimates',
    'load_estimates',
    'DESIRED_COLUMN_ORDER',
]
