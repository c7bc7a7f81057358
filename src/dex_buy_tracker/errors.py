"""Error taxonomy shared by the live tracking core.

Every failure scoped to a single pool, chain or destination is converted to
one of these at the boundary where it happens, then caught by the caller and
turned into a safe fallback. None of them is ever surfaced to destinations.
"""


class TrackerError(Exception):
    """Base exception for tracker errors."""


class TransientLookupError(TrackerError):
    """Raised when an external API or chain query is unreachable."""


class MalformedInputError(TrackerError):
    """Raised when a single unit of input cannot be interpreted."""


class ConnectionLostError(TrackerError):
    """Raised when a chain handle's transport is no longer usable."""
