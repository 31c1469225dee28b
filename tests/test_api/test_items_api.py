"""Tests for the REST API over httpx's ASGI transport.

The app runs against the in-memory SQLite ledger from conftest, with the
database session, settlement gateway and Redis client swapped through
FastAPI dependency overrides. The caller is identified by X-Principal.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from escrow_market.api.deps import get_db_session, get_redis_client, get_settlement
from escrow_market.main import create_app
from escrow_market.services.ledger_service import LedgerService


class InMemoryRedis:
    """Just enough of the redis client for SET NX / DEL."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0


@pytest.fixture
def redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest_asyncio.fixture
async def app(session_factory, settlement, admin, redis):
    async with session_factory() as s:
        await LedgerService(s, settlement).initialize(admin)
        await s.commit()

    async def override_get_db_session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_settlement] = lambda: settlement
    app.dependency_overrides[get_redis_client] = lambda: redis
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


def as_(principal: str) -> dict[str, str]:
    return {"X-Principal": principal}


async def _register(client, seller: str, price: int = 100) -> int:
    resp = await client.post(
        "/api/v1/items",
        json={"name": "Widget", "description": "desc", "price": price},
        headers=as_(seller),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegisterEndpoint:
    async def test_register(self, client, seller) -> None:
        resp = await client.post(
            "/api/v1/items",
            json={"name": "Widget", "description": "desc", "price": 100},
            headers=as_(seller),
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["id"] == 1
        assert body["status"] == "ON_SALE"
        assert body["seller"] == seller
        assert body["buyer"] is None
        assert body["escrow"] == 0
        assert resp.headers["X-Request-ID"]

    async def test_missing_principal(self, client) -> None:
        resp = await client.post("/api/v1/items", json={"name": "Widget", "price": 100})
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_PRINCIPAL"

    async def test_zero_principal(self, client) -> None:
        resp = await client.post(
            "/api/v1/items",
            json={"name": "Widget", "price": 100},
            headers=as_("0x" + "0" * 40),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_PRINCIPAL"

    async def test_non_positive_price(self, client, seller) -> None:
        resp = await client.post(
            "/api/v1/items",
            json={"name": "Widget", "price": 0},
            headers=as_(seller),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_LISTING"

    async def test_malformed_body(self, client, seller) -> None:
        resp = await client.post(
            "/api/v1/items",
            json={"name": "Widget", "price": "a lot"},
            headers=as_(seller),
        )
        assert resp.status_code == 422

    async def test_price_too_large_to_store(self, client, seller) -> None:
        resp = await client.post(
            "/api/v1/items",
            json={"name": "Widget", "price": 2**63},
            headers=as_(seller),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_LISTING"

        ledger = (await client.get("/api/v1/ledger")).json()
        assert ledger["item_count"] == 0

    async def test_over_long_principal(self, client) -> None:
        resp = await client.post(
            "/api/v1/items",
            json={"name": "Widget", "price": 100},
            headers=as_("0x" + "5" * 200),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_PRINCIPAL"

    async def test_over_long_name(self, client, seller) -> None:
        resp = await client.post(
            "/api/v1/items",
            json={"name": "W" * 256, "price": 100},
            headers=as_(seller),
        )
        assert resp.status_code == 422

    async def test_idempotency_key(self, client, seller, redis) -> None:
        headers = {**as_(seller), "Idempotency-Key": "listing-1"}
        payload = {"name": "Widget", "price": 100}

        first = await client.post("/api/v1/items", json=payload, headers=headers)
        assert first.status_code == 201

        second = await client.post("/api/v1/items", json=payload, headers=headers)
        assert second.status_code == 409
        assert second.json()["error"] == "DUPLICATE_OPERATION"

        ledger = (await client.get("/api/v1/ledger")).json()
        assert ledger["item_count"] == 1

    async def test_failed_registration_releases_key(self, client, seller, redis) -> None:
        headers = {**as_(seller), "Idempotency-Key": "listing-2"}

        bad = await client.post("/api/v1/items", json={"name": "", "price": 100}, headers=headers)
        assert bad.status_code == 400
        assert redis.store == {}

        good = await client.post(
            "/api/v1/items", json={"name": "Widget", "price": 100}, headers=headers
        )
        assert good.status_code == 201


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycleEndpoints:
    async def test_buy_confirm_rate(self, client, seller, buyer, settlement) -> None:
        item_id = await _register(client, seller)

        resp = await client.post(
            f"/api/v1/items/{item_id}/buy", json={"paid_amount": 100}, headers=as_(buyer)
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "IN_TRANSACTION"
        assert resp.json()["escrow"] == 100

        resp = await client.post(f"/api/v1/items/{item_id}/confirm", headers=as_(buyer))
        assert resp.json()["status"] == "COMPLETED"
        assert resp.json()["escrow"] == 0
        assert settlement.paid_to(seller) == 100

        resp = await client.post(
            f"/api/v1/items/{item_id}/rate", json={"rating": 5}, headers=as_(buyer)
        )
        assert resp.json()["rating"] == 5

        resp = await client.post(
            f"/api/v1/items/{item_id}/rate", json={"rating": 3}, headers=as_(buyer)
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "ALREADY_RATED"

    async def test_self_trade(self, client, seller) -> None:
        item_id = await _register(client, seller)
        resp = await client.post(
            f"/api/v1/items/{item_id}/buy", json={"paid_amount": 100}, headers=as_(seller)
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "SELF_TRADE"

    async def test_payment_too_large_to_store(self, client, seller, buyer) -> None:
        item_id = await _register(client, seller)
        resp = await client.post(
            f"/api/v1/items/{item_id}/buy", json={"paid_amount": 2**63}, headers=as_(buyer)
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_PAYMENT"

        status = (await client.get(f"/api/v1/items/{item_id}/status")).json()
        assert status["status"] == "ON_SALE"

    async def test_confirm_unsold_item(self, client, seller, buyer) -> None:
        item_id = await _register(client, seller)
        resp = await client.post(f"/api/v1/items/{item_id}/confirm", headers=as_(buyer))
        assert resp.status_code == 409
        assert resp.json()["error"] == "INVALID_STATE"

    async def test_seller_cannot_confirm(self, client, seller, buyer) -> None:
        item_id = await _register(client, seller)
        await client.post(
            f"/api/v1/items/{item_id}/buy", json={"paid_amount": 100}, headers=as_(buyer)
        )
        resp = await client.post(f"/api/v1/items/{item_id}/confirm", headers=as_(seller))
        assert resp.status_code == 403
        assert resp.json()["error"] == "NOT_AUTHORIZED"

    async def test_refused_refund_then_arbitration(
        self, client, seller, buyer, admin, settlement
    ) -> None:
        item_id = await _register(client, seller)
        await client.post(
            f"/api/v1/items/{item_id}/buy", json={"paid_amount": 100}, headers=as_(buyer)
        )
        await client.post(
            f"/api/v1/items/{item_id}/refund-request",
            json={"reason": "damaged"},
            headers=as_(buyer),
        )
        resp = await client.post(
            f"/api/v1/items/{item_id}/refund-refuse",
            json={"reason": "not damaged"},
            headers=as_(seller),
        )
        assert resp.json()["status"] == "DISPUTED"

        resp = await client.post(
            f"/api/v1/items/{item_id}/resolve",
            json={"favor_buyer": True, "reason": "verified"},
            headers=as_(buyer),
        )
        assert resp.status_code == 403

        resp = await client.post(
            f"/api/v1/items/{item_id}/resolve",
            json={"favor_buyer": True, "reason": "verified"},
            headers=as_(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "DISPUTED_RESOLVED"
        assert settlement.paid_to(buyer) == 100

    async def test_refund_approved(self, client, seller, buyer, settlement) -> None:
        item_id = await _register(client, seller)
        await client.post(
            f"/api/v1/items/{item_id}/buy", json={"paid_amount": 100}, headers=as_(buyer)
        )
        resp = await client.post(
            f"/api/v1/items/{item_id}/refund-request",
            json={"reason": ""},
            headers=as_(buyer),
        )
        assert resp.json()["error"] == "EMPTY_REASON"

        await client.post(
            f"/api/v1/items/{item_id}/refund-request",
            json={"reason": "damaged"},
            headers=as_(buyer),
        )
        resp = await client.post(f"/api/v1/items/{item_id}/refund-approve", headers=as_(seller))
        assert resp.json()["status"] == "REFUNDED"
        assert settlement.paid_to(buyer) == 100

    async def test_transfer_failure_returns_502(self, client, seller, buyer, settlement) -> None:
        item_id = await _register(client, seller)
        await client.post(
            f"/api/v1/items/{item_id}/buy", json={"paid_amount": 100}, headers=as_(buyer)
        )
        settlement.fail_transfers_to(seller)

        resp = await client.post(f"/api/v1/items/{item_id}/confirm", headers=as_(buyer))
        assert resp.status_code == 502
        assert resp.json()["error"] == "TRANSFER_FAILED"

        status = (await client.get(f"/api/v1/items/{item_id}/status")).json()
        assert status["status"] == "IN_TRANSACTION"
        assert status["escrow"] == 100


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReadEndpoints:
    async def test_item_not_found(self, client) -> None:
        resp = await client.get("/api/v1/items/42")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NOT_FOUND"

    async def test_status(self, client, seller) -> None:
        item_id = await _register(client, seller)
        resp = await client.get(f"/api/v1/items/{item_id}/status")
        assert resp.json() == {
            "item_id": item_id,
            "status": "ON_SALE",
            "escrow": 0,
            "buyer": None,
            "is_rated": False,
            "allowed_operations": ["buy_item"],
        }

    async def test_events(self, client, seller) -> None:
        item_id = await _register(client, seller)
        events = (await client.get(f"/api/v1/items/{item_id}/events")).json()
        assert [e["event_type"] for e in events] == ["ITEM_REGISTERED", "ITEM_STATUS_CHANGED"]
        assert events[0]["metadata"]["seller"] == seller

    async def test_principal_indexes(self, client, seller, buyer) -> None:
        first = await _register(client, seller)
        second = await _register(client, seller, price=50)
        await client.post(
            f"/api/v1/items/{second}/buy", json={"paid_amount": 50}, headers=as_(buyer)
        )

        selling = (await client.get(f"/api/v1/principals/{seller}/selling")).json()
        assert selling == {"principal": seller, "item_ids": [first, second]}

        buying = (await client.get(f"/api/v1/principals/{buyer}/buying")).json()
        assert buying["item_ids"] == [second]

    async def test_ledger(self, client, seller, buyer, admin) -> None:
        item_id = await _register(client, seller)
        await client.post(
            f"/api/v1/items/{item_id}/buy", json={"paid_amount": 120}, headers=as_(buyer)
        )

        resp = await client.get("/api/v1/ledger")
        assert resp.json() == {
            "admin": admin,
            "item_count": 1,
            "total_escrow": 120,
            "items_in_custody": 1,
        }


class TestHealthEndpoint:
    async def test_degraded_without_redis(self, client, engine, monkeypatch) -> None:
        monkeypatch.setattr("escrow_market.api.routes.health._get_engine", lambda: engine)

        resp = await client.get("/health")
        body = resp.json()
        assert resp.status_code == 200
        assert body["database"] == "healthy"
        assert body["redis"].startswith("unhealthy")
        assert body["status"] == "degraded"
