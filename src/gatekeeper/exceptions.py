"""Infrastructure failures that escape the core.

Expected domain outcomes (wrong code, expired session, rate limited event,
terminal rank) are never raised; they come back as plain results.
"""


class GatekeeperError(Exception):
    """Base class for gatekeeper infrastructure errors."""


class StorageError(GatekeeperError):
    """The storage backend failed to read or write."""


class VerificationTimeoutError(GatekeeperError):
    """Completing a verification took longer than the configured bound."""
