"""
Error taxonomy for the forecast pipeline.

ConfigurationError is fatal. ExternalServiceError and GenerationParseError are recovered
locally (stale cache, retry, roster fallback). InsufficientDataError never reaches the user:
the aggregator turns it into None.
"""
from typing import Optional


class ForecastError(Exception):
    """Base class for every error raised by diet_forecast."""


class ConfigurationError(ForecastError):
    """A required credential or setting is missing."""


class ExternalServiceError(ForecastError):
    """Non-2xx status, transport failure or malformed payload from an external service."""

    def __init__(self, service: str, status: Optional[int] = None, body: str = ""):
        self.service = service
        self.status = status
        self.body = body
        detail = f"status {status}" if status is not None else "transport error"
        super().__init__(f"{service} request failed ({detail}): {body[:300]}")


class GenerationParseError(ForecastError):
    """Model output had no JSON-shaped payload, or it could not be repaired or validated."""

    def __init__(self, reason: str, raw: str = ""):
        self.reason = reason
        self.raw = raw
        super().__init__(reason)


class RejectedOutputError(ForecastError):
    """Model output parsed but failed a quality gate (e.g. uniform vote shares)."""


class InsufficientDataError(ForecastError):
    def __init__(self, found: int, required: int):
        self.found = found
        self.required = required
        super().__init__(f"only {found} region predictions cached, {required} required")
