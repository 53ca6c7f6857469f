"""Configuration loading for the inversion engine."""

import copy
from pathlib import Path

import yaml

# Project root: src/mnopop/utils/config.py -> utils -> mnopop -> src -> project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent.parent

DEFAULT_CONFIG_PATH = _PROJECT_ROOT / "config" / "parameters.yaml"

DEFAULT_CONFIG = {
    'observation': {
        'threshold': 0.05,
        'renormalize': False,
        'midpoint': -92.5,
        'steepness': 0.2,
    },
    'mismatch': {
        'noise_levels': [0, 3, 6, 9, 12, 15, 18, 21],
        'quantization_levels': [0, 1, 2, 3, 4, 5, 10],
        'seed': 42,
    },
    'estimation': {
        'n_iter': 200,
        'ldt': 1e-9,
        'stopping': 'loglik',
        'checkpoints': [1, 10, 50, 200],
        'df': {
            'relaxation': 0.5,
            'schedule': 'constant',
            'decay': 0.0,
        },
    },
    'convex': {
        'solver': None,
        'timeout': 600.0,
        'align_iterations': 1,
    },
    'focus': {
        'width': 0.5,
        'n_points': 21,
        'n_jobs': 1,
    },
    'sweep': {
        'estimators': ['em', 'df'],
        'n_jobs': 1,
    },
}


def _deep_merge(base, update):
    """Recursively merge ``update`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (update or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config):
    """
    Check value ranges of a merged configuration.

    Raises
    ------
    ValueError
        If any value is outside its admissible range
    """
    obs = config['observation']
    if not 0 <= obs['threshold'] < 1:
        raise ValueError(f"observation.threshold must be in [0, 1), got {obs['threshold']}")
    if obs['steepness'] <= 0:
        raise ValueError(f"observation.steepness must be positive, got {obs['steepness']}")

    est = config['estimation']
    if int(est['n_iter']) < 1:
        raise ValueError(f"estimation.n_iter must be >= 1, got {est['n_iter']}")
    if est['ldt'] is not None and est['ldt'] < 0:
        raise ValueError(f"estimation.ldt must be non-negative, got {est['ldt']}")
    if est['stopping'] not in ('loglik', 'estimate'):
        raise ValueError(f"estimation.stopping must be 'loglik' or 'estimate', got {est['stopping']!r}")
    if any(int(k) < 0 for k in est['checkpoints']):
        raise ValueError(f"estimation.checkpoints must be non-negative, got {est['checkpoints']}")

    df = est['df']
    if not 0 < df['relaxation'] <= 1:
        raise ValueError(f"estimation.df.relaxation must be in (0, 1], got {df['relaxation']}")
    if df['schedule'] not in ('constant', 'harmonic'):
        raise ValueError(f"estimation.df.schedule must be 'constant' or 'harmonic', got {df['schedule']!r}")
    if df['decay'] < 0:
        raise ValueError(f"estimation.df.decay must be non-negative, got {df['decay']}")

    timeout = config['convex']['timeout']
    if timeout is not None and timeout <= 0:
        raise ValueError(f"convex.timeout must be positive, got {timeout}")

    focus = config['focus']
    if not 0 < focus['width'] <= 1:
        raise ValueError(f"focus.width must be in (0, 1], got {focus['width']}")
    if int(focus['n_points']) < 1:
        raise ValueError(f"focus.n_points must be >= 1, got {focus['n_points']}")

    for name in config['sweep']['estimators']:
        if name not in ('em', 'df', 'convex'):
            raise ValueError(f"Unknown estimator in sweep.estimators: {name!r}")

    return config


def load_config(path=None, overrides=None):
    """
    Load the engine configuration.

    Values from the YAML file are merged over :data:`DEFAULT_CONFIG`, then
    ``overrides`` are merged over the result.

    Parameters
    ----------
    path : str or Path, optional
        YAML file. If omitted, ``config/parameters.yaml`` in the project root
        is used when present, otherwise only the built-in defaults.
    overrides : dict, optional
        Nested dictionary of values taking precedence over the file

    Returns
    -------
    dict
        Validated configuration

    Raises
    ------
    FileNotFoundError
        If an explicit ``path`` does not exist
    ValueError
        If a value is out of range

    Examples
    --------
    >>> config = load_config(overrides={'estimation': {'n_iter': 50}})
    >>> config['estimation']['n_iter']
    50
    """
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
    elif DEFAULT_CONFIG_PATH.exists():
        path = DEFAULT_CONFIG_PATH

    file_config = {}
    if path is not None:
        with open(path, 'r') as f:
            file_config = yaml.safe_load(f) or {}

    config = _deep_merge(DEFAULT_CONFIG, file_config)
    config = _deep_merge(config, overrides)
    return validate_config(config)
