import os
import tempfile
import uuid

_DB_DIR = tempfile.mkdtemp(prefix="creatorbook_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/creatorbook.db"
os.environ["OUTBOX_ENABLED"] = "false"
os.environ["TX_RETRY_ATTEMPTS"] = "5"
os.environ["TX_RETRY_BACKOFF"] = "0.001"

import httpx
import pytest

from creatorbook.db import AsyncSessionLocal, Base, engine
from creatorbook.main import app


@pytest.fixture(autouse=True)
async def schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def session():
    async with AsyncSessionLocal() as s:
        yield s


class Market:
    """Small helper around the HTTP API for arranging test scenarios."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def user(self, credits: int = 0, approved: bool = False, role: str = "client") -> uuid.UUID:
        user_id = uuid.uuid4()
        resp = await self.client.post(f"/profiles/{user_id}", json={"email": f"{user_id.hex[:8]}@example.com", "role": role})
        assert resp.status_code == 200, resp.text
        if credits:
            resp = await self.client.post(f"/wallets/{user_id}/demo-topup", json={"amount": credits})
            assert resp.status_code == 200, resp.text
        if approved:
            resp = await self.client.post(f"/profiles/{user_id}/approval", json={"approved": True})
            assert resp.status_code == 200, resp.text
        return user_id

    async def seller(self) -> uuid.UUID:
        return await self.user(approved=True, role="creator")

    async def package(self, seller_id, price: int, service: str = "music_video", tier: str = "bronze") -> uuid.UUID:
        resp = await self.client.post(f"/sellers/{seller_id}/packages", json={
            "service": service,
            "tier": tier,
            "title": f"{tier} {service}",
            "price_credits": price,
            "delivery_days": 7,
        })
        assert resp.status_code == 200, resp.text
        return uuid.UUID(resp.json()["id"])

    async def book(self, buyer_id, *lines, notes: str = "") -> dict:
        resp = await self.client.post("/bookings", json={
            "buyer_id": str(buyer_id),
            "notes": notes,
            "lines": [{"seller_id": str(s), "package_id": str(p)} for s, p in lines],
        })
        assert resp.status_code == 200, resp.text
        return resp.json()

    async def fire(self, booking_id, event: str, actor, **extra) -> httpx.Response:
        return await self.client.post(
            f"/bookings/{booking_id}/transition",
            json={"event": event, "actor": str(actor), **extra},
        )

    async def balance(self, user_id) -> int:
        resp = await self.client.get(f"/wallets/{user_id}")
        assert resp.status_code == 200, resp.text
        return resp.json()["balance"]

    async def ledger_sum(self, user_id) -> int:
        resp = await self.client.get(f"/wallets/{user_id}/transactions", params={"limit": 500})
        assert resp.status_code == 200, resp.text
        return sum(tx["amount"] for tx in resp.json())


@pytest.fixture
def market(client):
    return Market(client)
