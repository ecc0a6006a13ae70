"""
Error taxonomy

Every error that crosses a module boundary carries a stable string code.
The API layer maps codes to HTTP status; the retry executor uses
`transient` to decide what is worth another attempt.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional


class ErrorCode:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_NOT_FOUND = "RATE_NOT_FOUND"
    PROVIDER_FAILED = "PROVIDER_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_INVALID_RESPONSE = "PROVIDER_INVALID_RESPONSE"
    PROVIDER_CIRCUIT_OPEN = "PROVIDER_CIRCUIT_OPEN"
    ALL_PROVIDERS_FAILED = "ALL_PROVIDERS_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_HTTP_STATUS: Dict[str, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.RATE_NOT_FOUND: 404,
    ErrorCode.PROVIDER_FAILED: 502,
    ErrorCode.RATE_LIMITED: 503,
    ErrorCode.PROVIDER_TIMEOUT: 504,
    ErrorCode.PROVIDER_INVALID_RESPONSE: 502,
    ErrorCode.PROVIDER_CIRCUIT_OPEN: 503,
    ErrorCode.ALL_PROVIDERS_FAILED: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}


class AdvisorError(Exception):
    """Base error with a machine-readable code."""

    code: str = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: Dict[str, Any] = dict(details or {})

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(AdvisorError):
    code = ErrorCode.VALIDATION_ERROR


class NotFoundError(AdvisorError):
    code = ErrorCode.NOT_FOUND


class RateNotFoundError(AdvisorError):
    code = ErrorCode.RATE_NOT_FOUND

    def __init__(self, from_currency: str, to_currency: str, rate_date: Optional[str] = None):
        message = f"No exchange rate stored for {from_currency}->{to_currency}"
        if rate_date:
            message += f" on or before {rate_date}"
        super().__init__(
            message,
            details={"from": from_currency, "to": to_currency, "rate_date": rate_date},
        )
        self.from_currency = from_currency
        self.to_currency = to_currency


class InternalError(AdvisorError):
    code = ErrorCode.INTERNAL_ERROR


class ProviderError(AdvisorError):
    """
    Failure talking to an upstream data provider.

    `transient` marks failures worth retrying (network errors, timeouts,
    429/503/504). `attempts` is filled in by the retry executor.
    """

    code = ErrorCode.PROVIDER_FAILED

    def __init__(
        self,
        message: str,
        provider: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        transient: bool = False,
        retry_after_seconds: Optional[float] = None,
    ):
        super().__init__(message, code=code, details={"provider": provider, "status_code": status_code})
        self.provider = provider
        self.status_code = status_code
        self.transient = transient
        self.retry_after_seconds = retry_after_seconds
        self.attempts = 0

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["details"]["attempts"] = self.attempts
        return data


class CircuitOpenError(AdvisorError):
    """Raised when a breaker rejects a call without reaching the provider."""

    code = ErrorCode.PROVIDER_CIRCUIT_OPEN

    def __init__(self, provider: str, next_attempt_at: Optional[datetime]):
        retry_hint = next_attempt_at.isoformat() if next_attempt_at else "unknown"
        super().__init__(
            f"Circuit open for provider '{provider}', next attempt at {retry_hint}",
            details={"provider": provider, "next_attempt_at": retry_hint},
        )
        self.provider = provider
        self.next_attempt_at = next_attempt_at


class AllProvidersFailedError(AdvisorError):
    """Every provider in a chain failed and no cached copy exists."""

    code = ErrorCode.ALL_PROVIDERS_FAILED

    def __init__(self, data_type: str, provider_errors: Dict[str, Exception]):
        summary = "; ".join(f"{name}: {err}" for name, err in provider_errors.items())
        super().__init__(
            f"All {data_type} providers failed ({summary or 'no providers configured'})",
            details={
                "data_type": data_type,
                "providers": {
                    name: getattr(err, "code", type(err).__name__)
                    for name, err in provider_errors.items()
                },
            },
        )
        self.data_type = data_type
        self.provider_errors = provider_errors

    @property
    def provider_names(self) -> List[str]:
        return list(self.provider_errors.keys())
