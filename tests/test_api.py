import gzip
from decimal import Decimal

from loyalty.auth import TOKEN_COOKIE
from loyalty.models import OrderStatus

TEXT = {"Content-Type": "text/plain"}


# 🔐 Регистрация и вход
async def test_register_and_login(api, register):
    headers = await register("alice")
    assert headers["Authorization"].startswith("Bearer ")

    r = await api.post("/api/user/login", json={"login": "alice", "password": "password123"})
    assert r.status_code == 200
    assert r.headers["Authorization"].startswith("Bearer ")
    assert r.headers["set-cookie"].startswith(f"{TOKEN_COOKIE}=")


async def test_register_taken_login(api, register):
    await register("alice")
    r = await api.post("/api/user/register", json={"login": "alice", "password": "other"})
    assert r.status_code == 409


async def test_login_wrong_password(api, register):
    await register("alice")
    r = await api.post("/api/user/login", json={"login": "alice", "password": "nope"})
    assert r.status_code == 401
    r = await api.post("/api/user/login", json={"login": "bob", "password": "nope"})
    assert r.status_code == 401


async def test_malformed_body_is_bad_request(api):
    r = await api.post("/api/user/register", content="{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    r = await api.post("/api/user/register", json={"login": "alice"})
    assert r.status_code == 400


async def test_endpoints_require_auth(api):
    for method, path in [("GET", "/api/user/orders"), ("POST", "/api/user/orders"),
                         ("GET", "/api/user/balance"), ("POST", "/api/user/balance/withdraw"),
                         ("GET", "/api/user/withdrawals")]:
        r = await api.request(method, path)
        assert r.status_code == 401, path

    r = await api.get("/api/user/balance", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


async def test_cookie_authenticates(api):
    r = await api.post("/api/user/register", json={"login": "carol", "password": "pw"})
    token = r.headers["Authorization"].split()[1]
    api.cookies.clear()

    r = await api.get("/api/user/balance", headers={"Cookie": f"{TOKEN_COOKIE}={token}"})
    assert r.status_code == 200


# 📦 Заказы
async def test_order_upload_codes(api, register):
    alice = await register("alice")
    bob = await register("bob")

    r = await api.post("/api/user/orders", content="12345678903", headers={**alice, **TEXT})
    assert r.status_code == 202
    r = await api.post("/api/user/orders", content="12345678903", headers={**alice, **TEXT})
    assert r.status_code == 200
    r = await api.post("/api/user/orders", content="12345678903", headers={**bob, **TEXT})
    assert r.status_code == 409
    r = await api.post("/api/user/orders", content="12345678901", headers={**alice, **TEXT})
    assert r.status_code == 422
    r = await api.post("/api/user/orders", content="", headers={**alice, **TEXT})
    assert r.status_code == 400
    r = await api.post("/api/user/orders", json={"order": "18"}, headers=alice)
    assert r.status_code == 400


async def test_order_list(api, register, storage):
    alice = await register("alice")

    r = await api.get("/api/user/orders", headers=alice)
    assert r.status_code == 204

    await api.post("/api/user/orders", content="12345678903", headers={**alice, **TEXT})
    await api.post("/api/user/orders", content="79927398713", headers={**alice, **TEXT})
    await storage.apply_order_outcome("12345678903", OrderStatus.PROCESSED, Decimal("729.98"))

    r = await api.get("/api/user/orders", headers=alice)
    assert r.status_code == 200
    body = r.json()
    assert [o["number"] for o in body] == ["79927398713", "12345678903"]
    assert body[0]["status"] == "NEW"
    assert "accrual" not in body[0]
    assert body[1]["status"] == "PROCESSED"
    assert body[1]["accrual"] == 729.98
    assert "uploaded_at" in body[1]


# 💰 Баланс и списания
async def test_balance_and_withdrawals(api, register, storage):
    alice = await register("alice")

    r = await api.get("/api/user/balance", headers=alice)
    assert r.json() == {"current": 0.0, "withdrawn": 0.0}
    r = await api.get("/api/user/withdrawals", headers=alice)
    assert r.status_code == 204

    await api.post("/api/user/orders", content="12345678903", headers={**alice, **TEXT})
    await storage.apply_order_outcome("12345678903", OrderStatus.PROCESSED, Decimal("500"))

    r = await api.post("/api/user/balance/withdraw", json={"order": "4561261212345464", "sum": 10}, headers=alice)
    assert r.status_code == 422
    r = await api.post("/api/user/balance/withdraw", json={"order": "4561261212345467", "sum": 0}, headers=alice)
    assert r.status_code == 422
    r = await api.post("/api/user/balance/withdraw", json={"order": "4561261212345467", "sum": 0.004}, headers=alice)
    assert r.status_code == 422
    r = await api.post("/api/user/balance/withdraw", json={"order": "4561261212345467", "sum": 751}, headers=alice)
    assert r.status_code == 402

    r = await api.post("/api/user/balance/withdraw", json={"order": "4561261212345467", "sum": 200.5}, headers=alice)
    assert r.status_code == 200
    r = await api.post("/api/user/balance/withdraw", json={"order": "4561261212345467", "sum": 1}, headers=alice)
    assert r.status_code == 409

    r = await api.get("/api/user/balance", headers=alice)
    assert r.json() == {"current": 299.5, "withdrawn": 200.5}

    r = await api.get("/api/user/withdrawals", headers=alice)
    assert r.status_code == 200
    [w] = r.json()
    assert w["order"] == "4561261212345467"
    assert w["sum"] == 200.5
    assert "processed_at" in w


async def test_health(api):
    r = await api.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


# 🗜️ gzip
async def test_gzip_request_bodies_are_inflated(api, register, storage):
    alice = await register("alice")

    r = await api.post("/api/user/orders", content=gzip.compress(b"12345678903"),
                       headers={**alice, **TEXT, "Content-Encoding": "gzip"})
    assert r.status_code == 202
    assert [o.number for o in await storage.list_orders(1)] == ["12345678903"]

    await storage.apply_order_outcome("12345678903", OrderStatus.PROCESSED, Decimal("50"))
    r = await api.post("/api/user/balance/withdraw",
                       content=gzip.compress(b'{"order": "4561261212345467", "sum": 20}'),
                       headers={**alice, "Content-Type": "application/json", "Content-Encoding": "gzip"})
    assert r.status_code == 200
    assert await storage.get_balance(1) == (Decimal("50"), Decimal("20"))


async def test_broken_gzip_body_is_bad_request(api, register):
    alice = await register("alice")
    r = await api.post("/api/user/orders", content=b"not gzip at all",
                       headers={**alice, **TEXT, "Content-Encoding": "gzip"})
    assert r.status_code == 400


async def test_responses_are_gzipped_on_request(api, register):
    alice = await register("alice")

    r = await api.get("/api/user/balance", headers={**alice, "Accept-Encoding": "gzip"})
    assert r.status_code == 200
    assert r.headers["content-encoding"] == "gzip"
    assert r.json() == {"current": 0.0, "withdrawn": 0.0}

    r = await api.get("/api/user/balance", headers={**alice, "Accept-Encoding": "identity"})
    assert "content-encoding" not in r.headers

    # nothing to compress
    r = await api.get("/api/user/orders", headers={**alice, "Accept-Encoding": "gzip"})
    assert r.status_code == 204
    assert "content-encoding" not in r.headers
