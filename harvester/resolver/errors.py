"""Exception hierarchy raised while resolving URLs."""

from __future__ import annotations


class ResolutionError(RuntimeError):
    """Base exception for one failed resolution step."""


class BlockedError(ResolutionError):
    """Raised when a domain or path is off-limits for the rest of the run."""

    def __init__(self, message: str, *, domains: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.domains = domains


class ConnTimeoutError(ResolutionError):
    """Raised when a connect or read timeout did not (yet) block the domain."""


class HeadUnsupportedError(ResolutionError):
    """Raised when HEAD is rejected and the role does not allow a GET retry."""


class ProtocolError(ResolutionError):
    """Raised for transport failures that are not attributed to the domain."""


class HttpStatusError(ResolutionError):
    """Raised when a redirect chain ends on a 4xx/5xx status."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class RedirectBudgetExceededError(ResolutionError):
    """Raised when a redirect chain is longer than the role allows."""

    def __init__(self, url: str, max_redirects: int) -> None:
        super().__init__(f"Redirect chain from {url} exceeded {max_redirects} hops")
        self.url = url
        self.max_redirects = max_redirects


class RejectedTargetError(ResolutionError):
    """Raised when a redirect target matches an exclusion rule."""

    def __init__(self, source_url: str, target_url: str, reason: str) -> None:
        super().__init__(f"Rejected redirect from {source_url} to {target_url}: {reason}")
        self.source_url = source_url
        self.target_url = target_url
        self.reason = reason


class ClassificationUnknownError(ResolutionError):
    """Raised when neither headers nor body reveal a usable content type."""


class FileNotRetrievedError(ResolutionError):
    """Raised when a matched resource could not be stored."""


class ConfigError(ValueError):
    """Raised when resolver configuration inputs are invalid."""


__all__ = [
    "BlockedError",
    "ClassificationUnknownError",
    "ConfigError",
    "ConnTimeoutError",
    "FileNotRetrievedError",
    "HeadUnsupportedError",
    "HttpStatusError",
    "ProtocolError",
    "RedirectBudgetExceededError",
    "RejectedTargetError",
    "ResolutionError",
]
