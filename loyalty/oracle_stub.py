# loyalty/oracle_stub.py
"""In-memory stand-in for the accrual system, for local runs and e2e tests.

Serves the same ``GET /api/orders/{number}`` contract as the real thing.
``POST /api/orders`` (test hook) sets what the stub answers for a number.
With ``rate_limit`` set, requests beyond that many per window get 429 and
a ``Retry-After`` header.

Run standalone:
    python -m loyalty.oracle_stub        # listens on ACCRUAL_STUB_PORT (8081)
"""
import os
import time
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Response, status
from pydantic import BaseModel, Field

from .schemas import AccrualStatus


class OrderRegistration(BaseModel):
    order: str
    status: AccrualStatus = AccrualStatus.REGISTERED
    accrual: Optional[float] = Field(default=None, ge=0)


class OracleState:
    def __init__(self, rate_limit: Optional[int] = None, window: float = 60.0, retry_after: int = 60):
        self.orders: Dict[str, OrderRegistration] = {}
        self.rate_limit = rate_limit
        self.window = window
        self.retry_after = retry_after
        self.requests = 0
        self._window_started = time.monotonic()
        self._in_window = 0

    def allow(self) -> bool:
        self.requests += 1
        if self.rate_limit is None:
            return True
        now = time.monotonic()
        if now - self._window_started >= self.window:
            self._window_started = now
            self._in_window = 0
        self._in_window += 1
        return self._in_window <= self.rate_limit


def create_oracle_app(rate_limit: Optional[int] = None, window: float = 60.0, retry_after: int = 60) -> FastAPI:
    app = FastAPI(title="accrual-stub")
    state = OracleState(rate_limit=rate_limit, window=window, retry_after=retry_after)
    app.state.oracle = state

    @app.get("/api/orders/{number}")
    async def get_order(number: str):
        if not state.allow():
            return Response(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                headers={"Retry-After": str(state.retry_after)},
                content=f"No more than {state.rate_limit} requests per minute allowed",
                media_type="text/plain",
            )
        entry = state.orders.get(number)
        if entry is None:
            return Response(status_code=status.HTTP_204_NO_CONTENT)
        return entry.model_dump(mode="json", exclude_none=True)

    @app.post("/api/orders", status_code=status.HTTP_202_ACCEPTED)
    async def register_order(payload: OrderRegistration):
        """Test-only: decide what the stub reports for an order.

        Disabled when ALLOW_TEST_ENDPOINTS is '0'.
        """
        if os.getenv("ALLOW_TEST_ENDPOINTS", "1") != "1":
            raise HTTPException(status_code=403, detail="Test endpoints disabled")
        if payload.status is not AccrualStatus.PROCESSED and payload.accrual is not None:
            raise HTTPException(status_code=400, detail="accrual is only reported for PROCESSED orders")
        state.orders[payload.order] = payload
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "ok", "orders": len(state.orders), "requests": state.requests}

    return app


if __name__ == "__main__":
    limit = os.getenv("ACCRUAL_STUB_RATE_LIMIT")
    uvicorn.run(
        create_oracle_app(rate_limit=int(limit) if limit else None),
        host="0.0.0.0",
        port=int(os.getenv("ACCRUAL_STUB_PORT", "8081")),
    )
