"""
Global Exception Handling

Error taxonomy for the redecoration pipeline, the circuit breaker guarding
the external segmentation and generation services, and the FastAPI
handlers that render errors as structured JSON.
"""

import time
import traceback
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from homedecor.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class HomeDecorError(Exception):
    """Base exception for the redecoration service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(HomeDecorError):
    """Raised when caller input is missing or malformed."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", 400)
        super().__init__(message, **kwargs)


class DecodeError(ValidationError):
    """Raised when image bytes cannot be decoded as a raster."""


class SourceImageError(ValidationError):
    """Raised when the source image cannot be fetched or is not an image."""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if url:
            self.details["url"] = url


class SizeConstraintUnsatisfiable(HomeDecorError):
    """Raised when no conformance pass brings an image under the limits."""

    def __init__(self, message: str, size_bytes: Optional[int] = None, **kwargs):
        super().__init__(message, code=422, stage="conformance", **kwargs)
        if size_bytes is not None:
            self.details["size_bytes"] = size_bytes


class InsufficientCreditsError(HomeDecorError):
    """Raised when the billing service refuses a debit."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=402, **kwargs)


class TransientNetworkError(HomeDecorError):
    """Raised on timeouts or transport failures talking to a remote service."""

    def __init__(self, message: str, service: str, **kwargs):
        super().__init__(message, code=504, **kwargs)
        self.details["service"] = service


class UpstreamAPIError(HomeDecorError):
    """Raised when an external API call fails (segmentation or generation)."""

    def __init__(self, message: str, service: str, http_status: Optional[int] = None, **kwargs):
        super().__init__(message, code=502, **kwargs)
        self.service = service
        self.http_status = http_status
        self.details["service"] = service
        self.details["http_status"] = http_status


class AuthError(UpstreamAPIError):
    """Generation API rejected our credentials (401)."""


class RateLimitError(UpstreamAPIError):
    """Generation API throttled the call (429)."""


class InvalidRequestError(UpstreamAPIError):
    """Generation API rejected the payload (400)."""


class UpstreamError(UpstreamAPIError):
    """Generation API failed on its side (5xx) or is unavailable."""


class UnknownGenerationError(UpstreamAPIError):
    """Any other non-success answer from the generation API."""


class SegmentationError(UpstreamAPIError):
    """Segmentation service call failed or returned an unusable response."""

    def __init__(self, message: str, http_status: Optional[int] = None, **kwargs):
        super().__init__(message, service="segmentation", http_status=http_status, **kwargs)


class StorageError(HomeDecorError):
    """Raised when storage operations fail."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class InvalidStatusTransition(HomeDecorError):
    """Raised when a request is moved to a status its lifecycle forbids."""

    def __init__(self, current: str, target: str, **kwargs):
        super().__init__(
            f"Cannot transition request from {current} to {target}",
            code=409,
            **kwargs
        )
        self.details["current"] = current
        self.details["target"] = target


class CircuitBreakerOpenError(UpstreamError):
    """Raised instead of calling a service whose circuit breaker is open."""

    def __init__(self, service: str, **kwargs):
        super().__init__(
            f"Service '{service}' is temporarily unavailable (circuit breaker open)",
            service=service,
            **kwargs
        )
        self.code = 503


# =============================================================================
# Circuit Breaker
# =============================================================================

class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Fails fast on a remote service that keeps failing.

    CLOSED counts consecutive failures. At ``failure_threshold`` the breaker
    opens and ``can_execute()`` is False until ``recovery_timeout`` seconds
    have passed. It is then HALF_OPEN: the next success closes it, the next
    failure opens it again.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def state(self) -> CircuitState:
        if self._state is CircuitState.OPEN and self._clock() - self._opened_at >= self.recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            logger.info("circuit_breaker_half_open", circuit=self.name)
        return self._state

    def can_execute(self) -> bool:
        return self.state is not CircuitState.OPEN

    def record_success(self):
        if self.state is CircuitState.HALF_OPEN:
            logger.info("circuit_breaker_closed", circuit=self.name)
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = None

    def record_failure(self, error: Optional[Exception] = None):
        self._failures += 1
        state = self.state
        if state is CircuitState.HALF_OPEN or (
            state is CircuitState.CLOSED and self._failures >= self.failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "circuit_breaker_opened",
                circuit=self.name,
                failure_count=self._failures,
                retry_after_seconds=self.recovery_timeout,
                error=str(error) if error else None,
            )

    def reset(self):
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = None


# One breaker per external service, shared by every client in the process
circuit_breakers: Dict[str, CircuitBreaker] = {
    "segmentation": CircuitBreaker("segmentation", failure_threshold=3, recovery_timeout=120),
    "generation": CircuitBreaker("generation", failure_threshold=5, recovery_timeout=60),
}


def get_circuit_breaker(name: str) -> CircuitBreaker:
    if name not in circuit_breakers:
        circuit_breakers[name] = CircuitBreaker(name)
    return circuit_breakers[name]


# =============================================================================
# FastAPI Exception Handlers
# =============================================================================

def _timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(HomeDecorError)
    async def homedecor_exception_handler(request: Request, exc: HomeDecorError):
        request_id = exc.request_id or request_id_var.get()

        log = logger.warning if exc.code < 500 else logger.error
        log(
            "homedecor_exception",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            stage=exc.stage,
            details=exc.details,
            path=str(request.url.path),
        )

        return JSONResponse(
            status_code=exc.code,
            content={
                "error": exc.message,
                "request_id": request_id,
                "code": exc.code,
                "stage": exc.stage,
                "details": exc.details,
                "timestamp": _timestamp()
            }
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "request_id": request_id_var.get(),
                "code": 500,
                "timestamp": _timestamp()
            }
        )
