from datetime import datetime, timedelta, timezone
from decimal import Decimal
from email.utils import format_datetime

import httpx
import pytest

from conftest import make_accrual_client
from loyalty.accrual import OutcomeKind, parse_retry_after
from loyalty.errors import OracleProtocolError
from loyalty.schemas import AccrualStatus


@pytest.mark.parametrize("value,expected", [
    ("60", 60.0),
    (" 2 ", 2.0),
    ("0", None),
    ("-5", None),
    ("soon", None),
    ("", None),
    (None, None),
])
def test_parse_retry_after_seconds(value, expected):
    assert parse_retry_after(value) == expected


def test_parse_retry_after_http_date():
    when = datetime.now(timezone.utc) + timedelta(seconds=120)
    seconds = parse_retry_after(format_datetime(when, usegmt=True))
    assert 100 < seconds <= 120

    past = datetime.now(timezone.utc) - timedelta(seconds=120)
    assert parse_retry_after(format_datetime(past, usegmt=True)) is None


async def test_processed_response():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request.url.path)
        return httpx.Response(200, json={"order": "12345678903", "status": "PROCESSED", "accrual": 729.98})

    client = make_accrual_client(handler)
    outcome = await client.get_order("12345678903")
    await client.aclose()

    assert seen == ["/api/orders/12345678903"]
    assert outcome.kind is OutcomeKind.OK
    assert outcome.response.status is AccrualStatus.PROCESSED
    assert outcome.response.accrual == Decimal("729.98")


async def test_intermediate_status_without_accrual():
    client = make_accrual_client(
        lambda request: httpx.Response(200, json={"order": "18", "status": "PROCESSING"}))
    outcome = await client.get_order("18")
    assert outcome.kind is OutcomeKind.OK
    assert outcome.response.status is AccrualStatus.PROCESSING
    assert outcome.response.accrual is None


async def test_no_content_means_no_data():
    client = make_accrual_client(lambda request: httpx.Response(204))
    outcome = await client.get_order("18")
    assert outcome.kind is OutcomeKind.NO_DATA
    assert outcome.response is None


async def test_rate_limited_carries_retry_after():
    client = make_accrual_client(
        lambda request: httpx.Response(429, headers={"Retry-After": "60"}, text="No more than N requests"))
    outcome = await client.get_order("18")
    assert outcome.kind is OutcomeKind.RATE_LIMITED
    assert outcome.retry_after == 60.0


async def test_rate_limited_without_header():
    client = make_accrual_client(lambda request: httpx.Response(429))
    outcome = await client.get_order("18")
    assert outcome.kind is OutcomeKind.RATE_LIMITED
    assert outcome.retry_after is None


async def test_server_error_is_unexpected():
    client = make_accrual_client(lambda request: httpx.Response(500, text="boom"))
    outcome = await client.get_order("18")
    assert outcome.kind is OutcomeKind.UNEXPECTED
    assert outcome.status_code == 500


@pytest.mark.parametrize("response", [
    httpx.Response(200, text="not json"),
    httpx.Response(200, json={"order": "18"}),
    httpx.Response(200, json={"order": "18", "status": "DONE"}),
    httpx.Response(200, json={"order": "18", "status": "PROCESSED", "accrual": -1}),
    httpx.Response(200, json={"order": "18", "status": "PROCESSED", "accrual": "lots"}),
    httpx.Response(200, json={"order": "26", "status": "PROCESSED", "accrual": 1}),
])
async def test_malformed_responses_raise_protocol_error(response):
    client = make_accrual_client(lambda request: response)
    with pytest.raises(OracleProtocolError):
        await client.get_order("18")


async def test_network_errors_propagate():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_accrual_client(handler)
    with pytest.raises(httpx.HTTPError):
        await client.get_order("18")
