"""Unit tests for the channel API client."""

import base64
import hashlib
import hmac
from datetime import date

import httpx
import pytest

from conftest import make_booking
from tourdesk.channel.client import (
    BOOKING_SEARCH_PATH,
    FetchReport,
    TruncatedSweep,
    calculate_retry_delay,
    sign_request,
    string_to_sign,
)
from tourdesk.channel.errors import (
    ChannelAuthError,
    ChannelError,
    ChannelPermissionError,
    ChannelTransientError,
)

START = date(2026, 11, 1)
END = date(2026, 11, 30)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def _collect(client, **kwargs):
    return [page async for page in client.fetch_pages(START, END, **kwargs)]


def test_string_to_sign_canonical():
    """Test that the canonical string covers method, path, timestamp and body."""
    message = string_to_sign("canonical", "k", "2026-01-01 00:00:00", "post", "/p", '{"page":0}')

    assert message == 'POST\n/p\n2026-01-01 00:00:00\n{"page":0}'


def test_sign_request_canonical_covers_body():
    """Test the HMAC-SHA256 signature and that changing the body changes it."""
    signature = sign_request("s", "k", "2026-01-01 00:00:00", "POST", "/p", '{"page":0}')
    expected = base64.b64encode(
        hmac.new(b"s", b'POST\n/p\n2026-01-01 00:00:00\n{"page":0}', hashlib.sha256).digest()
    ).decode("ascii")

    assert signature == expected
    assert sign_request("s", "k", "2026-01-01 00:00:00", "POST", "/p", '{"page":1}') != signature


def test_sign_request_canonical_known_vector():
    signature = sign_request(
        "test-secret-key", "test-access-key", "2026-10-19 08:30:00", "post", BOOKING_SEARCH_PATH, '{"page":0}'
    )

    assert signature == "S2ucaer2cIfdBBsuIF/5t4AC9EHDxqvre07sRSShcBk="


def test_sign_request_bokun_known_vector():
    """Test the legacy Bokun HMAC-SHA1 signature over date, key, method and path."""
    signature = sign_request(
        "test-secret-key", "test-access-key", "2026-10-19 08:30:00", "post", BOOKING_SEARCH_PATH, scheme="bokun"
    )

    assert signature == "+b20MjtLj/oHushVAyPkt7CkJog="


def test_retry_delay_grows_exponentially():
    """Test backoff bounds for successive attempts."""
    for attempt in range(4):
        delay = calculate_retry_delay(attempt, 1.0)
        assert 2 ** attempt <= delay <= 1.5 * 2 ** attempt


@pytest.mark.asyncio
async def test_requests_are_signed(make_client, fake_channel):
    """Test that every request carries the access key, date and a signature over the sent body."""
    async with make_client() as client:
        await client.search_bookings("SUPPLIER", START, END)

    request = fake_channel.requests[0]
    date_header = request.headers["X-Bokun-Date"]
    assert request.headers["X-Bokun-AccessKey"] == "test-access-key"
    assert request.headers["X-Bokun-Signature"] == sign_request(
        "test-secret-key", "test-access-key", date_header, "POST", BOOKING_SEARCH_PATH, request.content.decode()
    )


@pytest.mark.asyncio
async def test_requests_signed_with_bokun_scheme(make_client, fake_channel):
    """Test that the legacy scheme can be selected per client."""
    fake_channel.add(make_booking(1))
    async with make_client(signing_scheme="bokun") as client:
        await client.get_booking("1")

    request = fake_channel.requests[0]
    assert request.headers["X-Bokun-Signature"] == sign_request(
        "test-secret-key", "test-access-key", request.headers["X-Bokun-Date"], "GET", "/booking.json/1",
        scheme="bokun",
    )


@pytest.mark.asyncio
async def test_search_body(make_client, fake_channel):
    """Test the booking search request body."""
    async with make_client() as client:
        await client.search_bookings("SELLER", START, END, page=3)

    body = fake_channel.search_bodies[0]
    assert body["bookingRole"] == "SELLER"
    assert body["page"] == 3
    assert body["vendorId"] == "42"
    assert body["bookingStatuses"] == ["CONFIRMED", "PENDING", "CANCELLED"]
    assert body["startDateRange"]["from"] == "2026-11-01T00:00:00.000Z"
    assert body["startDateRange"]["to"] == "2026-11-30T23:59:59.999Z"


@pytest.mark.asyncio
async def test_server_error_is_retried(make_client, fake_channel):
    """Test that a 503 followed by success returns the successful body."""
    fake_channel.scripted = [
        httpx.Response(503, json={"message": "busy"}),
        httpx.Response(200, json={"items": [make_booking(1)], "totalHits": 1}),
    ]

    async with make_client() as client:
        page = await client.search_bookings("SUPPLIER", START, END)

    assert len(fake_channel.requests) == 2
    assert page.total_hits == 1
    assert page.items[0]["id"] == 1


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after(make_client, fake_channel):
    """Test that a 429 waits for the channel's Retry-After."""
    sleep = SleepRecorder()
    fake_channel.scripted = [
        httpx.Response(429, headers={"Retry-After": "3"}),
        httpx.Response(429, json={"retryAfter": 500}),
        httpx.Response(200, json={"items": [], "totalHits": 0}),
    ]

    async with make_client(sleep=sleep) as client:
        await client.search_bookings("SUPPLIER", START, END)

    # Body value is capped
    assert sleep.delays == [3.0, 60.0]


@pytest.mark.asyncio
async def test_retries_exhausted(make_client, fake_channel):
    """Test that persistent 5xx responses raise a transient error."""
    fake_channel.fail_status = 502

    async with make_client() as client:
        with pytest.raises(ChannelTransientError) as exc_info:
            await client.search_bookings("SUPPLIER", START, END)

    # max_retries=2 in the test settings
    assert exc_info.value.attempts == 3
    assert exc_info.value.status_code == 502
    assert len(fake_channel.requests) == 3


@pytest.mark.asyncio
async def test_transport_errors_are_retried(make_client):
    """Test that connection failures are retried, then surfaced."""
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ChannelTransientError) as exc_info:
            await client.search_bookings("SUPPLIER", START, END)

    assert len(calls) == 3
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [401, 403])
async def test_auth_failure_is_not_retried(make_client, fake_channel, status_code):
    """Test that rejected credentials fail immediately."""
    fake_channel.fail_status = status_code

    async with make_client() as client:
        with pytest.raises(ChannelAuthError) as exc_info:
            await client.search_bookings("SUPPLIER", START, END)

    assert exc_info.value.status_code == status_code
    assert len(fake_channel.requests) == 1


@pytest.mark.asyncio
async def test_see_other_means_missing_permission(make_client, fake_channel):
    """Test that the channel's 303 is reported as a permission error."""
    fake_channel.fail_status = 303

    async with make_client() as client:
        with pytest.raises(ChannelPermissionError):
            await client.search_bookings("SUPPLIER", START, END)


@pytest.mark.asyncio
async def test_client_error_is_channel_error(make_client, fake_channel):
    """Test that other 4xx responses raise a plain channel error."""
    fake_channel.fail_status = 400

    async with make_client() as client:
        with pytest.raises(ChannelError) as exc_info:
            await client.search_bookings("SUPPLIER", START, END)

    assert not isinstance(exc_info.value, (ChannelAuthError, ChannelTransientError))
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_non_json_body(make_client, fake_channel):
    """Test that an HTML body on a 200 is an error."""
    fake_channel.scripted = [httpx.Response(200, text="<html>maintenance</html>")]

    async with make_client() as client:
        with pytest.raises(ChannelError):
            await client.search_bookings("SUPPLIER", START, END)


@pytest.mark.asyncio
async def test_pagination_across_roles_deduplicates(make_client, fake_channel):
    """Test paging through both roles with a booking seen under both."""
    fake_channel.add(*[make_booking(i) for i in range(1, 6)], role="SUPPLIER")
    fake_channel.add(make_booking(3), make_booking(10), role="SELLER")

    async with make_client(page_size=2) as client:
        pages = await _collect(client)

    ids = [item["id"] for page in pages for item in page.items]
    assert ids == [1, 2, 3, 4, 5, 10]
    assert [(page.role, page.page) for page in pages] == [
        ("SUPPLIER", 0), ("SUPPLIER", 1), ("SUPPLIER", 2), ("SELLER", 0),
    ]


@pytest.mark.asyncio
async def test_pagination_respects_max_pages(make_client, fake_channel):
    """Test that paging stops at the page limit and the report records the cut."""
    fake_channel.add(*[make_booking(i) for i in range(1, 8)])
    report = FetchReport()

    async with make_client(page_size=2, max_pages=2, booking_roles=["SUPPLIER"]) as client:
        pages = await _collect(client, report=report)

    assert [page.page for page in pages] == [0, 1]
    assert report.truncated == [TruncatedSweep(role="SUPPLIER", fetched=4, total_hits=7)]
    assert report.truncation_message() == "page limit reached: 4 of 7 bookings fetched"
    assert report.stopped_early is False


@pytest.mark.asyncio
async def test_last_page_at_limit_is_not_truncated(make_client, fake_channel):
    fake_channel.add(*[make_booking(i) for i in range(1, 5)])
    report = FetchReport()

    async with make_client(page_size=2, max_pages=2, booking_roles=["SUPPLIER"]) as client:
        await _collect(client, report=report)

    assert report.truncated == []
    assert report.truncation_message() is None


@pytest.mark.asyncio
async def test_bookings_without_id_pass_through(make_client, fake_channel):
    """Test that bookings lacking an id are never merged as duplicates."""
    first, second = make_booking(1), make_booking(2)
    del first["id"]
    del second["id"]
    fake_channel.add(first, second, make_booking(3))

    async with make_client() as client:
        pages = await _collect(client)

    codes = [item["confirmationCode"] for page in pages for item in page.items]
    assert codes == ["FLO-1", "FLO-2", "FLO-3"]


@pytest.mark.asyncio
async def test_fetch_stops_when_asked(make_client, fake_channel):
    """Test that the stop callback is checked before each page."""
    fake_channel.add(*[make_booking(i) for i in range(1, 6)])
    pages_seen = []
    report = FetchReport()

    async with make_client(page_size=2) as client:
        pages = client.fetch_pages(START, END, should_stop=lambda: len(pages_seen) >= 1, report=report)
        async for page in pages:
            pages_seen.append(page)

    assert len(pages_seen) == 1
    assert len(fake_channel.search_bodies) == 1
    assert report.stopped_early is True


@pytest.mark.asyncio
async def test_stop_after_last_page_is_not_early(make_client, fake_channel):
    """Test that a stop request after the final page leaves the sweep complete."""
    fake_channel.add(*[make_booking(i) for i in range(1, 3)])
    pages_seen = []
    report = FetchReport()

    async with make_client(page_size=2, booking_roles=["SUPPLIER"]) as client:
        pages = client.fetch_pages(START, END, should_stop=lambda: len(pages_seen) >= 1, report=report)
        async for page in pages:
            pages_seen.append(page)

    assert len(pages_seen) == 1
    assert report.stopped_early is False


@pytest.mark.asyncio
async def test_fetch_bookings_validates(make_client, fake_channel):
    """Test that fetch_bookings yields validated bookings."""
    fake_channel.add(make_booking(7))

    async with make_client() as client:
        bookings = [booking async for booking in client.fetch_bookings(START, END)]

    assert [booking.external_id for booking in bookings] == ["7"]


@pytest.mark.asyncio
async def test_get_booking(make_client, fake_channel):
    """Test single booking lookup and the not-found error."""
    fake_channel.add(make_booking(55))

    async with make_client() as client:
        booking = await client.get_booking("55")
        with pytest.raises(ChannelError) as exc_info:
            await client.get_booking("56")

    assert booking.confirmation_code == "FLO-55"
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_connection_check(make_client, fake_channel):
    """Test the connection check result."""
    async with make_client() as client:
        result = await client.test_connection()

    assert result["success"] is True
    assert result["base_url"] == "https://channel.test"
    assert result["access_key_preview"] == "test-acc..."
    assert fake_channel.requests[0].url.path == "/activity.json/search"
