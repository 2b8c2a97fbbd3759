"""HTTP client for the booking channel API."""

import asyncio
import base64
import hashlib
import hmac
import json as jsonlib
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, Optional

import httpx

from ..core.config import Settings
from ..core.observability import metrics_collector
from .errors import ChannelAuthError, ChannelError, ChannelPermissionError, ChannelTransientError
from .schemas import BookingPage, RawBooking

logger = logging.getLogger(__name__)

BOOKING_SEARCH_PATH = "/booking.json/booking-search"
BOOKING_STATUSES = ["CONFIRMED", "PENDING", "CANCELLED"]
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
MAX_RETRY_AFTER_SECONDS = 60.0


@dataclass(frozen=True)
class TruncatedSweep:
    """A booking role whose search stopped at the page limit."""
    role: str
    fetched: int
    total_hits: int


@dataclass
class FetchReport:
    """What a page sweep left out, filled in while it runs."""
    stopped_early: bool = False
    truncated: list[TruncatedSweep] = field(default_factory=list)

    def truncation_message(self) -> Optional[str]:
        if not self.truncated:
            return None
        fetched = sum(sweep.fetched for sweep in self.truncated)
        total = sum(sweep.total_hits for sweep in self.truncated)
        return f"page limit reached: {fetched} of {total} bookings fetched"


def calculate_retry_delay(attempt: int, base_delay: float = 1.0) -> float:
    """Calculate exponential backoff with jitter."""
    base = base_delay * (2 ** attempt)
    jitter = random.uniform(0, base / 2)
    return base + jitter


def string_to_sign(scheme: str, access_key: str, timestamp: str, method: str, path: str, body: str = "") -> str:
    """
    Build the string a request signature covers.

    ``canonical`` joins method, path (with query string), timestamp and the
    exact request body with newlines. ``bokun`` is the legacy Bokun form:
    timestamp, access key, method and path concatenated, body unsigned.
    """
    if scheme == "bokun":
        return f"{timestamp}{access_key}{method.upper()}{path}"
    return f"{method.upper()}\n{path}\n{timestamp}\n{body}"


def sign_request(
    secret_key: str,
    access_key: str,
    timestamp: str,
    method: str,
    path: str,
    body: str = "",
    scheme: str = "canonical",
) -> str:
    """
    Sign a channel request.

    Returns:
        Base64 encoded HMAC digest: SHA-256 for ``canonical``, SHA-1 for ``bokun``
    """
    message = string_to_sign(scheme, access_key, timestamp, method, path, body)
    digestmod = hashlib.sha1 if scheme == "bokun" else hashlib.sha256
    digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), digestmod).digest()
    return base64.b64encode(digest).decode("ascii")


def _retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds the channel asked us to wait, from the header or the JSON body."""
    value: Any = response.headers.get("Retry-After")
    if value is None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            value = body.get("retryAfter")
    try:
        return min(float(value), MAX_RETRY_AFTER_SECONDS) if value is not None else None
    except (TypeError, ValueError):
        return None


class ChannelClient:
    """
    Signed, retrying client for the channel's booking endpoints.

    One instance is created per sync run and closed when the run ends;
    use it as an async context manager.
    """

    def __init__(
        self,
        base_url: str,
        access_key: str,
        secret_key: str,
        vendor_id: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        page_size: int = 200,
        max_pages: int = 10,
        booking_roles: Iterable[str] = ("SUPPLIER", "SELLER"),
        signing_scheme: str = "canonical",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            base_url: Channel API root URL
            access_key: Access key sent with every request
            secret_key: Secret used to sign requests
            vendor_id: Vendor account searched for bookings
            timeout: HTTP request timeout in seconds
            max_retries: Retries for timeouts, 5xx and 429 responses
            retry_base_delay: Base delay for exponential backoff
            page_size: Booking search page size
            max_pages: Maximum pages fetched per booking role
            booking_roles: Booking roles searched, in order
            signing_scheme: "canonical" or the legacy "bokun" signature
            transport: Optional httpx transport (tests pass a MockTransport)
            sleep: Coroutine used to wait between retries
        """
        self.base_url = base_url.rstrip("/")
        self.access_key = access_key
        self.secret_key = secret_key
        self.vendor_id = vendor_id
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.page_size = page_size
        self.max_pages = max_pages
        self.booking_roles = list(booking_roles)
        self.signing_scheme = signing_scheme
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "ChannelClient":
        """Build a client from application settings."""
        options: Dict[str, Any] = {
            "base_url": settings.channel_base_url,
            "access_key": settings.channel_access_key,
            "secret_key": settings.channel_secret_key,
            "vendor_id": settings.channel_vendor_id or None,
            "timeout": settings.channel_timeout_seconds,
            "max_retries": settings.channel_max_retries,
            "retry_base_delay": settings.channel_retry_base_delay,
            "page_size": settings.channel_page_size,
            "max_pages": settings.channel_max_pages,
            "booking_roles": settings.channel_booking_roles,
            "signing_scheme": settings.channel_signing_scheme,
        }
        options.update(overrides)
        return cls(**options)

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                follow_redirects=False,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _signed_headers(self, method: str, path: str, body: str = "") -> Dict[str, str]:
        date_header = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        signature = sign_request(
            self.secret_key, self.access_key, date_header, method, path, body, scheme=self.signing_scheme
        )
        return {
            "X-Bokun-Date": date_header,
            "X-Bokun-AccessKey": self.access_key,
            "X-Bokun-Signature": signature,
        }

    def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        status_code = response.status_code
        if status_code < 300:
            return

        body = response.text[:500]
        if status_code in (401, 403):
            raise ChannelAuthError(
                f"Channel rejected credentials ({status_code}) for {method} {path}",
                status_code,
                body,
            )
        if status_code == 303:
            raise ChannelPermissionError(
                f"Channel credentials lack permission for {method} {path}",
                status_code,
                body,
            )
        raise ChannelError(f"Channel returned {status_code} for {method} {path}", status_code, body)

    async def request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send a signed request and return the decoded JSON body.

        Timeouts, transport failures, 5xx and 429 responses are retried up to
        ``max_retries`` times with exponential backoff; a 429 waits for the
        channel's Retry-After when it sends one.

        Raises:
            ChannelAuthError: On 401/403
            ChannelPermissionError: On 303
            ChannelTransientError: When retries are exhausted
            ChannelError: On any other non-2xx response or a non-JSON body
        """
        client = await self.get_client()
        # Signed bytes must be the bytes sent
        body = jsonlib.dumps(json, separators=(",", ":")) if json is not None else ""
        attempt = 0

        while True:
            headers = self._signed_headers(method, path, body)
            if body:
                headers["Content-Type"] = "application/json"
            try:
                response = await client.request(method, path, content=body or None, headers=headers)
            except httpx.TransportError as e:
                metrics_collector.record_channel_request(method, None)
                if attempt >= self.max_retries:
                    raise ChannelTransientError(
                        f"Channel unreachable for {method} {path}: {e}",
                        attempts=attempt + 1,
                    ) from e
                delay = calculate_retry_delay(attempt, self.retry_base_delay)
                logger.warning(
                    "Channel request failed, retrying",
                    extra={"method": method, "path": path, "attempt": attempt + 1, "delay": delay, "error": str(e)}
                )
            else:
                metrics_collector.record_channel_request(method, response.status_code)
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    self._raise_for_status(response, method, path)
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ChannelError(
                            f"Channel returned a non-JSON body for {method} {path}",
                            response.status_code,
                            response.text[:500],
                        ) from e

                if attempt >= self.max_retries:
                    raise ChannelTransientError(
                        f"Channel returned {response.status_code} for {method} {path} after {attempt + 1} attempts",
                        response.status_code,
                        response.text[:500],
                        attempts=attempt + 1,
                    )
                delay = None
                if response.status_code == 429:
                    delay = _retry_after(response)
                if delay is None:
                    delay = calculate_retry_delay(attempt, self.retry_base_delay)
                logger.warning(
                    "Channel request throttled or failed, retrying",
                    extra={
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "attempt": attempt + 1,
                        "delay": delay,
                    }
                )

            attempt += 1
            await self._sleep(delay)

    def _search_body(self, role: str, start_date: date, end_date: date, page: int) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "bookingRole": role,
            "bookingStatuses": BOOKING_STATUSES,
            "pageSize": self.page_size,
            "page": page,
            "startDateRange": {
                "from": f"{start_date.isoformat()}T00:00:00.000Z",
                "to": f"{end_date.isoformat()}T23:59:59.999Z",
                "includeLower": True,
                "includeUpper": True,
            },
        }
        if self.vendor_id:
            body["vendorId"] = self.vendor_id
        return body

    async def search_bookings(self, role: str, start_date: date, end_date: date, page: int = 0) -> BookingPage:
        """
        Fetch one page of the booking search.

        Args:
            role: Booking role to search as (SUPPLIER or SELLER)
            start_date: First tour date, inclusive
            end_date: Last tour date, inclusive
            page: Zero-based page number

        Returns:
            The page with its raw booking payloads
        """
        data = await self.request("POST", BOOKING_SEARCH_PATH, json=self._search_body(role, start_date, end_date, page))
        if not isinstance(data, dict):
            raise ChannelError("Unexpected booking search response shape", 200, str(data)[:500])

        items = [item for item in data.get("items") or [] if isinstance(item, dict)]
        total_hits = data.get("totalHits")
        return BookingPage(
            role=role,
            page=page,
            total_hits=int(total_hits) if total_hits is not None else len(items),
            items=items,
        )

    async def fetch_pages(
        self,
        start_date: date,
        end_date: date,
        should_stop: Optional[Callable[[], bool]] = None,
        report: Optional[FetchReport] = None,
    ) -> AsyncIterator[BookingPage]:
        """
        Iterate over booking search pages for every configured role.

        Pages are fetched lazily. Bookings already returned under an earlier
        role are removed from later pages, so every booking id appears once;
        bookings without an id are always passed through. ``should_stop`` is
        checked before each page request; when it returns True iteration
        ends. Restarting means starting a new iteration.

        Args:
            report: Filled in with early stops and page-limit truncation
        """
        report = report if report is not None else FetchReport()
        seen: set[str] = set()

        for role in self.booking_roles:
            page = 0
            fetched = 0
            total_hits = 0
            while page < self.max_pages:
                if should_stop is not None and should_stop():
                    report.stopped_early = True
                    logger.info(
                        "Booking fetch stopped before page",
                        extra={"role": role, "page": page}
                    )
                    return

                result = await self.search_bookings(role, start_date, end_date, page)
                fetched += len(result.items)
                total_hits = result.total_hits
                fresh = []
                for item in result.items:
                    if item.get("id") is not None:
                        booking_id = str(item["id"])
                        if booking_id in seen:
                            continue
                        seen.add(booking_id)
                    fresh.append(item)

                logger.debug(
                    "Fetched booking page",
                    extra={
                        "role": role,
                        "page": page,
                        "items": len(result.items),
                        "new_items": len(fresh),
                        "total_hits": result.total_hits,
                    }
                )
                yield result.model_copy(update={"items": fresh})

                if not result.items or (page + 1) * self.page_size >= result.total_hits:
                    break
                page += 1
            else:
                if total_hits > fetched:
                    report.truncated.append(TruncatedSweep(role=role, fetched=fetched, total_hits=total_hits))
                    logger.warning(
                        "Booking search hit the page limit",
                        extra={"role": role, "max_pages": self.max_pages, "fetched": fetched, "total_hits": total_hits}
                    )

    async def fetch_bookings(self, start_date: date, end_date: date) -> AsyncIterator[RawBooking]:
        """Iterate over validated bookings with tour dates in the range."""
        async for page in self.fetch_pages(start_date, end_date):
            for item in page.items:
                yield RawBooking.from_payload(item)

    async def fetch_booking_payload(self, booking_id: str) -> Dict[str, Any]:
        """Fetch a single booking by its channel id, unvalidated."""
        data = await self.request("GET", f"/booking.json/{booking_id}")
        if not isinstance(data, dict):
            raise ChannelError("Unexpected booking response shape", 200, str(data)[:500])
        return data

    async def get_booking(self, booking_id: str) -> RawBooking:
        """Fetch a single booking by its channel id."""
        return RawBooking.from_payload(await self.fetch_booking_payload(booking_id))

    async def test_connection(self) -> Dict[str, Any]:
        """Run a minimal search to check credentials and connectivity."""
        await self.request("POST", "/activity.json/search", json={"page": 1, "pageSize": 1})
        return {
            "success": True,
            "base_url": self.base_url,
            "access_key_preview": f"{self.access_key[:8]}..." if self.access_key else "",
        }
