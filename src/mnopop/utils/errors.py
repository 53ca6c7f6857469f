"""Error and warning types raised by the inversion engine."""


class PopulationInversionError(Exception):
    """Base class for errors that abort a single estimation run."""


class DataInconsistencyError(PopulationInversionError, ValueError):
    """
    A cell with a positive observed count receives no mass from any tile.

    Parameters
    ----------
    message : str
        Human-readable description
    cell_ids : sequence, optional
        Ids of the offending cells
    """

    def __init__(self, message, cell_ids=None):
        super().__init__(message)
        self.cell_ids = list(cell_ids) if cell_ids is not None else []


class SolverFailureError(PopulationInversionError, RuntimeError):
    """Convex solve finished with a status other than 'optimal'."""

    def __init__(self, message, status):
        super().__init__(message)
        self.status = status


class UncoveredTileWarning(UserWarning):
    """Some tiles never reach the dominance threshold for any cell."""


class NonConvergenceWarning(UserWarning):
    """Iteration cap reached before the convergence threshold was met."""


class NonMonotoneLikelihoodWarning(UserWarning):
    """Log-likelihood decreased between two consecutive iterations."""
