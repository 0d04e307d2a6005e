"""HTTP gateway to the QSkipper backend."""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

import httpx

from .auth import SessionStore
from .config import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, RESPONSE_CACHE_TTL
from .errors import (
    DecodeFailure,
    FallbackExhausted,
    InvalidInputError,
    NetworkFailure,
    NotFoundError,
    QSkipperError,
    RequestTimeout,
    ServerError,
    UnauthorizedError,
)
from .normalizer import extract_error_message

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TOKEN_PATTERN = re.compile(r'("(?:token|accessToken)"\s*:\s*")[^"]+(")')


def _redact(text: str) -> str:
    return _TOKEN_PATTERN.sub(r"\1[REDACTED]\2", text)


@dataclass(frozen=True)
class ApiResponse:
    """Status, raw body and headers of a classified 2xx response."""

    status_code: int
    content: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class ResponseCache:
    """Short-lived in-memory cache of raw GET responses keyed by path."""

    def __init__(self, ttl: float = RESPONSE_CACHE_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, ApiResponse]] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> Optional[ApiResponse]:
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                return None
            stored_at, response = entry
            age = self._clock() - stored_at
            if age >= self.ttl:
                del self._entries[path]
                return None
        logger.info(f"Using cached response for {path}, age: {int(age)}s")
        return response

    def put(self, path: str, response: ApiResponse) -> None:
        with self._lock:
            self._entries[path] = (self._clock(), response)

    def invalidate(self, prefix: str) -> None:
        with self._lock:
            for path in [p for p in self._entries if p.startswith(prefix)]:
                del self._entries[path]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("API response cache cleared")


class StrategyState(str, Enum):
    NOT_TRIED = "not_tried"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


@dataclass
class Strategy(Generic[T]):
    """One way of performing a logical operation."""

    name: str
    call: Callable[[], T]
    retry_on: tuple[type, ...] = (NetworkFailure, DecodeFailure)
    state: StrategyState = StrategyState.NOT_TRIED
    error: Optional[Exception] = None


def run_strategies(operation: str, strategies: list[Strategy[T]]) -> T:
    """
    Try strategies in order and return the first success.

    A failure moves on to the next strategy only when it is one of that
    strategy's retry_on errors; any other QSkipperError is raised as is. When
    every strategy failed with a retryable error, FallbackExhausted carries
    the last one.
    """
    last_error: Optional[QSkipperError] = None

    for strategy in strategies:
        logger.info(f"{operation}: trying {strategy.name}")
        try:
            result = strategy.call()
        except QSkipperError as e:
            strategy.state = StrategyState.FAILED
            strategy.error = e
            last_error = e
            logger.warning(f"{operation}: {strategy.name} failed: {e.message}")
            if not isinstance(e, strategy.retry_on):
                raise
            continue

        strategy.state = StrategyState.SUCCEEDED
        logger.info(f"{operation}: {strategy.name} succeeded")
        return result

    if last_error is None:
        raise ValueError(f"{operation}: no strategies given")

    attempts = [(s.name, s.state) for s in strategies]
    raise FallbackExhausted(f"{operation} failed: {last_error.message}", last_error, attempts)


class ApiGateway:
    """
    Performs requests against the backend and classifies every response.

    2xx responses are returned; 401 raises UnauthorizedError after running the
    on_unauthorized callback; 404 raises NotFoundError (with the body, so list
    reads can turn it into an empty result); anything else raises ServerError
    with the best message that could be extracted.
    """

    def __init__(
        self,
        session_store: SessionStore,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        response_cache: Optional[ResponseCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
        on_unauthorized: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            session_store: Source of the bearer token
            base_url: Backend base URL
            timeout: Default timeout for reads
            response_cache: Cache used by GETs made with use_cache=True
            transport: Custom httpx transport (tests use httpx.MockTransport)
            on_unauthorized: Called when the backend answers 401
        """
        self.session_store = session_store
        self.timeout = timeout
        self.response_cache = response_cache or ResponseCache()
        self.on_unauthorized = on_unauthorized
        self.client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
            headers={
                "User-Agent": "QSkipperAdmin/1.0",
                "Accept": "application/json, text/plain, */*",
            },
        )

    def _auth_headers(self) -> dict[str, str]:
        token = self.session_store.get_token()
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: Optional[dict[str, str]] = None,
        files: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
        use_cache: bool = False,
    ) -> ApiResponse:
        """
        Send a request and return the classified 2xx response.

        Raises:
            InvalidInputError: If the URL cannot be built
            RequestTimeout: If the request timed out
            NetworkFailure: On any other transport error
            UnauthorizedError, NotFoundError, ServerError: On non-2xx statuses
        """
        method = method.upper()
        cacheable = use_cache and method == "GET"
        if cacheable:
            cached = self.response_cache.get(path)
            if cached is not None:
                return cached

        logger.info(f"API Request: {method} {path}")

        try:
            response = self.client.request(
                method,
                path,
                json=json,
                data=data,
                files=files,
                headers=self._auth_headers(),
                timeout=timeout or self.timeout,
            )
        except httpx.InvalidURL as e:
            raise InvalidInputError(f"Invalid URL for {path}: {e}") from e
        except httpx.TimeoutException as e:
            logger.error(f"Request timed out: {method} {path}")
            raise RequestTimeout(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Network error: {method} {path}: {e}")
            raise NetworkFailure(f"Network error occurred: {e}") from e

        api_response = ApiResponse(
            status_code=response.status_code,
            content=response.content,
            headers=dict(response.headers),
        )
        logger.info(f"API Response: status={api_response.status_code} from {path}")
        logger.debug(f"Response body: {_redact(api_response.text[:500])}")

        self.classify(api_response)

        if cacheable:
            self.response_cache.put(path, api_response)
        return api_response

    def classify(self, response: ApiResponse) -> None:
        """Raise the error matching a non-2xx response."""
        status = response.status_code
        if 200 <= status < 300:
            return
        if status == 401:
            logger.error("UNAUTHORIZED: backend rejected the session")
            if self.on_unauthorized:
                self.on_unauthorized()
            raise UnauthorizedError()
        message = extract_error_message(response.content, status)
        if status == 404:
            raise NotFoundError(message, body=response.content)
        logger.error(f"Server error: {message}")
        raise ServerError(message, status_code=status, body=response.content)

    def get(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.request("DELETE", path, **kwargs)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()
