# loyalty/accrual.py
"""Client for the external accrual system.

``GET {base}/api/orders/{number}`` answers

* 200 with ``{"order", "status", "accrual"?}``;
* 204 when the order is unknown to the accrual system yet;
* 429 with ``Retry-After`` seconds when we are over its rate limit.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Optional

import httpx

from .errors import OracleProtocolError
from .schemas import AccrualResponse


class OutcomeKind(str, Enum):
    OK = "OK"
    NO_DATA = "NO_DATA"
    RATE_LIMITED = "RATE_LIMITED"
    UNEXPECTED = "UNEXPECTED"


@dataclass
class AccrualOutcome:
    kind: OutcomeKind
    status_code: int
    response: Optional[AccrualResponse] = None
    retry_after: Optional[float] = None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(int(value))
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return seconds if seconds > 0 else None


class AccrualClient:
    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_order(self, number: str) -> AccrualOutcome:
        """Ask about one order.

        Network failures (including timeouts) propagate as ``httpx.HTTPError``;
        a 200 whose body does not decode raises ``OracleProtocolError``.
        """
        resp = await self._client.get(f"/api/orders/{number}")

        if resp.status_code == httpx.codes.NO_CONTENT:
            return AccrualOutcome(OutcomeKind.NO_DATA, resp.status_code)

        if resp.status_code == httpx.codes.TOO_MANY_REQUESTS:
            retry_after = parse_retry_after(resp.headers.get("Retry-After"))
            return AccrualOutcome(OutcomeKind.RATE_LIMITED, resp.status_code, retry_after=retry_after)

        if resp.status_code != httpx.codes.OK:
            return AccrualOutcome(OutcomeKind.UNEXPECTED, resp.status_code)

        try:
            payload = AccrualResponse.model_validate(resp.json())
        except ValueError as e:
            raise OracleProtocolError(f"undecodable accrual response for {number}: {e}") from e
        if payload.order != number:
            raise OracleProtocolError(f"asked about {number}, accrual system answered about {payload.order}")
        return AccrualOutcome(OutcomeKind.OK, resp.status_code, response=payload)
