#!/usr/bin/env python3
"""Simple e2e script against a running service and accrual stub.

Registers a user, uploads an order, makes the stub report it as PROCESSED,
waits for the worker to pick it up and spends the accrual.

Assumptions:
 - loyalty service: http://localhost:8080 (python -m loyalty)
 - accrual stub:    http://localhost:8081 (python -m loyalty.oracle_stub)
"""
import os
import sys
import time
import uuid

import httpx

SERVICE_URL = os.getenv("SERVICE_URL", "http://localhost:8080")
ACCRUAL_URL = os.getenv("ACCRUAL_URL", "http://localhost:8081")

ORDER = "12345678903"
RECEIPT = "4561261212345467"


def main() -> int:
    login = f"e2e-{uuid.uuid4().hex[:8]}"
    with httpx.Client(base_url=SERVICE_URL, timeout=10.0) as client:
        r = client.post("/api/user/register", json={"login": login, "password": "password123"})
        print("register:", r.status_code)
        if r.status_code != 200:
            print(r.text)
            return 1
        client.headers["Authorization"] = r.headers["Authorization"]

        r = client.post("/api/user/orders", content=ORDER, headers={"Content-Type": "text/plain"})
        print("upload order:", r.status_code)
        if r.status_code == 409:
            print("order already belongs to another user, restart the service with a fresh store")
            return 1

        r = httpx.post(f"{ACCRUAL_URL}/api/orders",
                       json={"order": ORDER, "status": "PROCESSED", "accrual": 500}, timeout=5.0)
        print("stub register:", r.status_code)

        deadline = time.monotonic() + 30
        while time.monotonic() < deadline:
            orders = client.get("/api/user/orders").json()
            if orders and orders[0]["status"] == "PROCESSED":
                break
            time.sleep(1)
        print("orders:", client.get("/api/user/orders").json())
        print("balance:", client.get("/api/user/balance").json())

        r = client.post("/api/user/balance/withdraw", json={"order": RECEIPT, "sum": 500})
        print("withdraw 500:", r.status_code)
        r = client.post("/api/user/balance/withdraw", json={"order": "79927398713", "sum": 1})
        print("withdraw 1 more:", r.status_code, "(402 expected)")
        print("withdrawals:", client.get("/api/user/withdrawals").json())
    return 0


if __name__ == "__main__":
    sys.exit(main())
