"""
Library API Backend — Google Books Metadata Resolver
=====================================================

What:  MetadataResolver backed by the Google Books volumes API.
How:   GET {base}/volumes?q=isbn:{isbn} with httpx, bounded timeout,
       tenacity retries for transport errors, and a circuit breaker that
       skips the API after repeated failures.
Who:   Created once in create_app() and shared by all requests, so the
       circuit breaker state is shared too.

Resilience Strategy:
    1. httpx timeout (GOOGLE_BOOKS_TIMEOUT); expiry is a transport error
    2. Tenacity retry with exponential backoff + jitter on transport errors
    3. Circuit breaker: after N failed lookups, return None immediately
       until the recovery timeout has passed
    4. Every failure ends as `None` plus a WARNING log line

Response mapping (first item's volumeInfo):
    title                     → title ("Unknown" when missing)
    authors[]                 → author, joined with ", " ("Unknown" when missing)
    industryIdentifiers       → isbn10 / isbn13 (isbn13 falls back to the query)
    publishedDate             → published_at (YYYY, YYYY-MM or YYYY-MM-DD)
    imageLinks.thumbnail      → thumbnail (smallThumbnail as fallback)

Free text is cut to the books column widths; oversized ids and URLs are dropped.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from library_api.config import Settings, settings as default_settings
from library_api.exceptions import UpstreamUnavailableError
from library_api.schemas.book import (
    ISBN10_MAX,
    ISBN13_MAX,
    PUBLISHER_MAX,
    TEXT_MAX,
    THUMBNAIL_MAX,
    BookMetadata,
)
from library_api.services.metadata_base import MetadataResolver

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m", "%Y")


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implements the circuit breaker pattern to stop hammering a failing API.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → can_execute() raises UpstreamUnavailableError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Thread Safety:
        Not thread-safe (plain counters). uvicorn async workers share one
        process and one event loop, so that is sufficient here.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        """
        Args:
            failure_threshold: Consecutive failures before opening circuit
            recovery_timeout: Seconds to wait before testing recovery
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check if a request is allowed through the circuit breaker.

        Returns:
            True if the request can proceed (CLOSED, or HALF_OPEN after timeout).

        Raises:
            UpstreamUnavailableError if the circuit is OPEN and the recovery
            timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker transitioning to HALF_OPEN after %.1fs",
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise UpstreamUnavailableError(
                message="Google Books lookups are paused after repeated failures",
                retry_after=max(remaining, 1),
            )

        # HALF_OPEN: allow the test request through
        return True

    def record_success(self) -> None:
        """Record a successful call. Resets the breaker to CLOSED."""
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        """Record a failed call. May trigger CLOSED → OPEN."""
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Response parsing
# ══════════════════════════════════════════════════════════════════════════

def parse_published_date(value: Optional[str]) -> Optional[datetime]:
    """Parse YYYY, YYYY-MM or YYYY-MM-DD into a UTC datetime; anything else is None."""
    if not isinstance(value, str) or not value:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _clip(value: Any, limit: int) -> Optional[str]:
    """Non-empty string cut to `limit` characters; anything else is None."""
    if not isinstance(value, str) or not value.strip():
        return None
    return value[:limit]


def _fitting(value: Any, limit: int) -> Optional[str]:
    """`value` when it is a string of at most `limit` characters, else None."""
    if isinstance(value, str) and 0 < len(value) <= limit:
        return value
    return None


def _author_names(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [name for name in value if isinstance(name, str) and name.strip()]


def parse_volume_info(info: Dict[str, Any], queried_isbn: str) -> BookMetadata:
    """
    Map one `volumeInfo` object onto BookMetadata.

    Free text is truncated to the column widths. Identifiers and thumbnail
    URLs that do not fit are dropped.
    """
    isbn10 = None
    isbn13 = None
    for identifier in info.get("industryIdentifiers") or []:
        if not isinstance(identifier, dict):
            continue
        kind = identifier.get("type")
        if kind == "ISBN_10" and isbn10 is None:
            isbn10 = _fitting(identifier.get("identifier"), ISBN10_MAX)
        elif kind == "ISBN_13" and isbn13 is None:
            isbn13 = _fitting(identifier.get("identifier"), ISBN13_MAX)

    authors = _author_names(info.get("authors"))
    description = info.get("description")
    images = info.get("imageLinks")
    if not isinstance(images, dict):
        images = {}

    return BookMetadata(
        title=_clip(info.get("title"), TEXT_MAX) or UNKNOWN,
        author=_clip(", ".join(authors), TEXT_MAX) or UNKNOWN,
        publisher=_clip(info.get("publisher"), PUBLISHER_MAX),
        published_at=parse_published_date(info.get("publishedDate")),
        isbn10=isbn10,
        isbn13=isbn13 or queried_isbn,
        description=description if isinstance(description, str) else None,
        thumbnail=(
            _fitting(images.get("thumbnail"), THUMBNAIL_MAX)
            or _fitting(images.get("smallThumbnail"), THUMBNAIL_MAX)
        ),
    )


# ══════════════════════════════════════════════════════════════════════════
# Google Books Service
# ══════════════════════════════════════════════════════════════════════════

class GoogleBooksService(MetadataResolver):
    """
    Google Books implementation of MetadataResolver.

    Error Handling Chain:
        Transport error → tenacity retries (bounded, backoff + jitter)
        → retries exhausted / non-2xx / bad JSON → record breaker failure, None
        → breaker threshold reached → later lookups return None instantly
        → recovery timeout → one test lookup (HALF_OPEN)
        → test succeeds → CLOSED again

    A lookup that reaches Google but finds nothing (totalItems == 0) is a
    success for the breaker and still returns None.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        config = config or default_settings
        self.base_url = config.google_books_base_url.rstrip("/")
        self.api_key = config.google_books_api_key
        self.timeout = config.google_books_timeout
        self.max_attempts = config.retry_max_attempts
        self.min_wait = config.retry_min_wait
        self.max_wait = config.retry_max_wait

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=config.cb_failure_threshold,
            recovery_timeout=config.cb_recovery_timeout,
        )

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))

        logger.info(
            "GoogleBooksService initialized (timeout=%.1fs, attempts=%d, "
            "circuit_breaker(threshold=%d, recovery=%ds))",
            self.timeout,
            self.max_attempts,
            config.cb_failure_threshold,
            config.cb_recovery_timeout,
        )

    @property
    def is_circuit_open(self) -> bool:
        return self.circuit_breaker.state == CircuitBreaker.OPEN

    async def fetch_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        request_id = str(uuid.uuid4())[:8]

        try:
            self.circuit_breaker.can_execute()
        except UpstreamUnavailableError as e:
            logger.warning(
                "[%s] Skipping Google Books lookup for %s: circuit open (retry in %ss)",
                request_id,
                isbn,
                e.retry_after,
            )
            return None

        start_time = time.time()
        try:
            payload = await self._get_volumes(isbn)
            metadata = self._parse_response(payload, isbn)
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.warning(
                "[%s] Google Books lookup for %s failed after %.0fms: %s: %s",
                request_id,
                isbn,
                (time.time() - start_time) * 1000,
                type(e).__name__,
                str(e),
            )
            return None

        self.circuit_breaker.record_success()
        if metadata is None:
            logger.info("[%s] Google Books has no volume for ISBN %s", request_id, isbn)
        else:
            logger.info(
                "[%s] Resolved ISBN %s to '%s' in %.0fms",
                request_id,
                isbn,
                metadata.title,
                (time.time() - start_time) * 1000,
            )
        return metadata

    async def _get_volumes(self, isbn: str) -> Any:
        """GET the volumes search, retrying transport errors only."""
        params = {"q": f"isbn:{isbn}"}
        if self.api_key:
            params["key"] = self.api_key

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self.max_attempts),
            # min_wait * 2^n capped at max_wait, plus up to min_wait of jitter
            wait=(
                wait_exponential(multiplier=self.min_wait, max=self.max_wait)
                + wait_random(0, self.min_wait)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                response = await self._client.get(
                    f"{self.base_url}/volumes",
                    params=params,
                    timeout=self.timeout,
                )

        response.raise_for_status()
        return response.json()

    @staticmethod
    def _parse_response(payload: Any, isbn: str) -> Optional[BookMetadata]:
        if not isinstance(payload, dict):
            raise ValueError("Unexpected Google Books response shape")
        items = payload.get("items") or []
        if not payload.get("totalItems") or not items:
            return None
        return parse_volume_info(items[0].get("volumeInfo") or {}, isbn)

    async def health_check(self) -> bool:
        """
        Check that the volumes endpoint answers.

        Any response below 500 counts as reachable; an open circuit counts
        as unavailable without making a request.
        """
        if self.is_circuit_open:
            return False
        try:
            response = await self._client.get(
                f"{self.base_url}/volumes",
                params={"q": "isbn:9780000000002", "maxResults": 1},
                timeout=self.timeout,
            )
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.warning("Google Books health check failed: %s", str(e))
            return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
