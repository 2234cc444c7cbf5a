"""Error taxonomy shared by the generation pipeline."""

from __future__ import annotations

from typing import Optional, Sequence


class GenerationError(RuntimeError):
    """Base class for failures raised while producing an affirmation image."""


class ConfigurationError(GenerationError):
    """A required credential or setting is missing."""


class RateLimitError(GenerationError):
    """The provider answered HTTP 429 on every allowed attempt."""


class ProviderClientError(GenerationError):
    """The provider rejected the request with a non-429 4xx status."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        message = f"provider rejected the request with HTTP {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ProviderServerError(GenerationError):
    """The provider kept failing with 5xx responses."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        message = f"provider failed with HTTP {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ProviderTransportError(GenerationError):
    """Timeouts or connection failures persisted until the attempt bound."""


class ResponseShapeError(GenerationError):
    """A 2xx response carried no image data any normalization strategy could find."""

    def __init__(self, strategies: Sequence[str], detail: Optional[str] = None) -> None:
        self.strategies = list(strategies)
        message = "no image data in response (tried: " + ", ".join(self.strategies) + ")"
        if detail:
            message += f"; {detail}"
        super().__init__(message)


# Failures where the provider could not be reached or kept refusing service.
UNREACHABLE_ERRORS = (RateLimitError, ProviderServerError, ProviderTransportError)
