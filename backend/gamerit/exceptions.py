"""Error taxonomy shared by the gateway, the ledgers and the HTTP layer.

User-facing validation failures subclass ValueError so routers can map
them to 400 responses uniformly.
"""

from typing import Optional


class GameritError(Exception):
    """Base class for all domain errors."""


# ── Gateway ─────────────────────────────────────────────────────────────────

class AuthError(GameritError):
    """Reddit credentials are missing or the token endpoint rejected them."""


class TransportError(GameritError):
    """Network failure, timeout, rate limit or 5xx from Reddit. Retryable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TokenUnavailable(TransportError):
    """The token endpoint could not be reached, so no authenticated call can succeed."""


# ── Validation (reported to the caller, never retried) ─────────────────────

class InvalidAmount(GameritError, ValueError):
    pass


class InsufficientFunds(GameritError, ValueError):
    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient points: have {available}, need {required}")
        self.required = required
        self.available = available


class InsufficientShares(GameritError, ValueError):
    def __init__(self, requested: int, available: int):
        super().__init__(f"Insufficient shares: have {available}, tried to sell {requested}")
        self.requested = requested
        self.available = available


class RoundNotActive(GameritError, ValueError):
    pass


class StockNotActive(GameritError, ValueError):
    pass


class DuplicateBet(GameritError, ValueError):
    pass


class WelfareNotAvailable(GameritError, ValueError):
    pass


class PlayerNotFound(GameritError, ValueError):
    pass


class RoundNotFound(GameritError, ValueError):
    pass


class StockNotFound(GameritError, ValueError):
    pass


# ── Signals ─────────────────────────────────────────────────────────────────

class PopulationCeilingReached(GameritError):
    """Not an error: the active population is already at its ceiling."""

    def __init__(self, active: int, ceiling: int):
        super().__init__(f"Population ceiling reached ({active}/{ceiling})")
        self.active = active
        self.ceiling = ceiling


class JobAlreadyRunning(GameritError):
    """Another invocation currently holds the lease for this job."""
