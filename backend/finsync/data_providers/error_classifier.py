"""
Error Classifier

Maps any exception raised while calling a provider onto exactly one
ErrorKind, which decides whether the orchestrator may fail over.
"""
import asyncio
from dataclasses import dataclass
from typing import Optional, Mapping
import aiohttp
from loguru import logger

from finsync.data_providers.adapters.base import ErrorKind, ProviderError


WILDCARD_PROVIDER = "*"

# Checked in order; first match wins
MESSAGE_HINTS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (ErrorKind.AUTH, ("auth", "credential", "unauthorized", "forbidden", "login required")),
    (ErrorKind.RATE_LIMIT, ("rate limit", "rate_limit", "too many requests", "throttl", "quota")),
    (ErrorKind.NETWORK, ("timeout", "timed out", "network", "connection reset", "connection refused")),
    (ErrorKind.PROVIDER_UNAVAILABLE, ("unavailable", "maintenance", "outage", "bad gateway")),
    (ErrorKind.VALIDATION, ("validation", "invalid", "malformed", "missing required")),
]


@dataclass(frozen=True)
class ClassifiedError:
    """A provider failure reduced to its retry-relevant facts."""
    kind: ErrorKind
    code: str
    message: str
    provider: str
    exception_type: str = ""
    timed_out: bool = False
    # Seconds the provider asked us to wait, when it said
    retry_after: Optional[float] = None

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "provider": self.provider,
            "retryable": self.retryable,
        }


class ErrorClassifier:
    """
    Classifies provider exceptions.

    Resolution order:
    1. Override for (provider, error code), then wildcard provider "*"
    2. Kind carried by a ProviderError
    3. Transport failures (timeouts, aiohttp/OS connection errors) -> network
    4. Keywords in the error message
    5. unknown (retryable)
    """

    def __init__(self, overrides: Optional[Mapping[str, Mapping[str, str]]] = None):
        self._overrides: dict[str, dict[str, ErrorKind]] = {}
        for provider, codes in (overrides or {}).items():
            key = provider.strip().lower() if provider != WILDCARD_PROVIDER else provider
            try:
                self._overrides[key] = {
                    str(code).upper(): ErrorKind(kind) for code, kind in codes.items()
                }
            except ValueError as e:
                raise ValueError(f"Invalid error classification override for {provider}: {e}") from e

    def classify(self, error: BaseException, provider: str) -> ClassifiedError:
        """Classify an exception raised by `provider`."""
        provider = provider.strip().lower()
        code = self._error_code(error)
        message = self._error_message(error)
        timed_out = isinstance(error, asyncio.TimeoutError)

        kind = self._from_overrides(provider, code)
        if kind is None:
            kind = self._infer_kind(error, message)

        if kind == ErrorKind.UNKNOWN:
            logger.warning(
                f"Unclassified error from {provider} ({type(error).__name__}, code={code}): {message}"
            )

        return ClassifiedError(
            kind=kind,
            code=code,
            message=message,
            provider=provider,
            exception_type=type(error).__name__,
            timed_out=timed_out,
            retry_after=getattr(error, "retry_after", None),
        )

    def _from_overrides(self, provider: str, code: str) -> Optional[ErrorKind]:
        for key in (provider, WILDCARD_PROVIDER):
            kind = self._overrides.get(key, {}).get(code.upper())
            if kind is not None:
                return kind
        return None

    def _infer_kind(self, error: BaseException, message: str) -> ErrorKind:
        if isinstance(error, ProviderError) and error.kind != ErrorKind.UNKNOWN:
            return error.kind

        if isinstance(error, (asyncio.TimeoutError, aiohttp.ClientError, ConnectionError)):
            return ErrorKind.NETWORK

        lowered = message.lower()
        for kind, hints in MESSAGE_HINTS:
            if any(hint in lowered for hint in hints):
                return kind

        # Remaining OS-level errors are socket/DNS failures
        if isinstance(error, OSError):
            return ErrorKind.NETWORK

        return ErrorKind.UNKNOWN

    @staticmethod
    def _error_code(error: BaseException) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return "TIMEOUT"
        code = getattr(error, "code", None)
        if code:
            return str(code)
        return "UNKNOWN_ERROR"

    @staticmethod
    def _error_message(error: BaseException) -> str:
        if isinstance(error, ProviderError):
            return error.message
        if isinstance(error, asyncio.TimeoutError):
            return str(error) or "Provider call timed out"
        return str(error) or type(error).__name__
