"""
Error taxonomy for plate resolution.

Only :class:`InputInvalid` and :class:`TotalResolutionFailure` ever reach
the caller.  The source-level errors describe why a fallback chain moved
on; the policy logs them rather than raising them.
"""

from __future__ import annotations

from typing import Optional


class ResolutionError(Exception):
    """Base class for every error raised by plateflow."""


class ConfigError(ResolutionError):
    """Raised when the YAML configuration names unknown groups or sources."""


class InputInvalid(ResolutionError):
    """The query plate is missing or malformed; no source is contacted."""

    def __init__(self, message: str, plate: Optional[str] = None) -> None:
        super().__init__(message)
        self.plate = plate


class BatchTooLarge(InputInvalid):
    """A batch request exceeded the maximum number of plates."""


class SourceError(ResolutionError):
    """A single source failed for one field group."""

    def __init__(self, source: str, group: str, detail: str = "") -> None:
        self.source = source
        self.group = group
        self.detail = detail
        message = f"{source} failed for {group}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class SourceBlocked(SourceError):
    """The source answered with an anti-bot challenge page."""


class SourceNotFound(SourceError):
    """The source reports that the plate does not exist."""


class SourceTransportError(SourceError):
    """Timeout, connection failure or unexpected adapter exception."""


class AllSourcesExhausted(ResolutionError):
    """Every configured source for a group failed; the group stays empty."""

    def __init__(self, group: str, attempted: list[str]) -> None:
        self.group = group
        self.attempted = list(attempted)
        super().__init__(
            f"all sources exhausted for {group} (tried: {', '.join(attempted) or 'none'})"
        )


class TotalResolutionFailure(ResolutionError):
    """No group could be resolved from a real upstream source."""

    def __init__(self, plate: str, message: str) -> None:
        super().__init__(message)
        self.plate = plate
