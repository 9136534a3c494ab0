"""Exception and warning types raised by coaster_ranker."""

from typing import Optional


class CoasterRankerError(Exception):
    """Base class for all coaster_ranker errors."""


class VolatilityConvergenceError(CoasterRankerError):
    """The Glicko-2 volatility solver exceeded its iteration bound."""

    def __init__(self, sigma: float, phi: float, max_iterations: int, name: Optional[str] = None):
        self.sigma = sigma
        self.phi = phi
        self.max_iterations = max_iterations
        self.name = name
        target = f" for {name!r}" if name else ""
        super().__init__(
            f"Volatility solver did not converge{target} within {max_iterations} "
            f"iterations (sigma={sigma:.6f}, phi={phi:.6f})"
        )


class PairingInvariantError(CoasterRankerError):
    """No open pair was found although the completed-pair set is not full."""


class PersistenceError(CoasterRankerError):
    """A persistence store failed to read or write a key."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Persistence failed for {key!r}: {reason}")


class PersistenceWarning(UserWarning):
    """Issued when a session could not persist its state.

    The in-memory state stays authoritative for the session.
    """
