"""
Damped fixed-point (DF) estimator.

Relaxed variant of the EM update:

    u_new = (1 - w_t) * u + w_t * EM(u),    then rescaled to sum(c)

with relaxation w_t in (0, 1]. With ``schedule='constant'`` w_t = w;
with ``schedule='harmonic'`` w_t = w / (1 + decay * (t - 1)). The run is
deterministic for fixed inputs.
"""

from .em import em_step, iterate

SCHEDULES = ('constant', 'harmonic')


def relaxation_factor(t, relaxation=0.5, schedule='constant', decay=0.0):
    """
    Relaxation weight at iteration ``t`` (1-based).

    Examples
    --------
    >>> round(relaxation_factor(3, 0.5, 'harmonic', 1.0), 4)
    0.1667
    """
    if schedule == 'constant':
        return relaxation
    return relaxation / (1.0 + decay * (t - 1))


def run_df(model, prior=None, n_iter=200, ldt=1e-9, stopping='loglik', checkpoints=None,
           relaxation=0.5, schedule='constant', decay=0.0, verbose=True):
    """
    Estimate the tile population with the damped fixed-point iteration.

    Parameters
    ----------
    model : ObservationModel
        Observation model (P, counts)
    prior : array-like of shape (N,), optional
        Initial weights, default: uniform
    n_iter : int, optional
        Iteration cap, default: 200
    ldt : float, optional
        Convergence threshold, default: 1e-9
    stopping : {'loglik', 'estimate'}, optional
        Stopping statistic, default: 'loglik'
    checkpoints : iterable of int, optional
        Iterations whose estimates are kept, default: ``[n_iter]``
    relaxation : float, optional
        Step weight w in (0, 1]; 1 reproduces EM. Default: 0.5
    schedule : {'constant', 'harmonic'}, optional
        Relaxation schedule, default: 'constant'
    decay : float, optional
        Decay rate of the harmonic schedule, default: 0
    verbose : bool, optional
        Default: True

    Returns
    -------
    EstimationResult
    """
    if not 0 < relaxation <= 1:
        raise ValueError(f"relaxation must be in (0, 1], got {relaxation}")
    if schedule not in SCHEDULES:
        raise ValueError(f"schedule must be one of {SCHEDULES}, got {schedule!r}")
    if decay < 0:
        raise ValueError(f"decay must be >= 0, got {decay}")

    total = model.total_count

    def step(u, t):
        w = relaxation_factor(t, relaxation, schedule, decay)
        u_new = (1.0 - w) * u + w * em_step(model.P, model.counts, u, cell_ids=model.cell_ids)
        mass = u_new.sum()
        if mass > 0:
            u_new = u_new * (total / mass)
        return u_new

    return iterate(model, step, 'df', prior=prior, n_iter=n_iter, ldt=ldt, stopping=stopping,
                   checkpoints=checkpoints, verbose=verbose,
                   parameters={'relaxation': relaxation, 'schedule': schedule, 'decay': decay})
