import asyncio
import uuid

import pytest

from creatorbook import crud
from creatorbook.config import settings
from creatorbook.db import AsyncSessionLocal, run_transaction
from creatorbook.errors import InsufficientFunds, NotFound, ValidationError
from creatorbook.models import TxKind


async def test_profile_creation_opens_empty_wallet(client):
    user_id = uuid.uuid4()
    resp = await client.post(f"/profiles/{user_id}", json={"email": "maya@example.com"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["display_name"] == "maya"
    assert body["city"] == "Los Angeles"
    assert body["role"] == "client"
    assert body["approved"] is False

    resp = await client.get(f"/wallets/{user_id}")
    assert resp.json() == {"user_id": str(user_id), "balance": 0}


async def test_ensure_profile_is_idempotent_and_updates_role(client, market):
    user_id = await market.user(credits=100)
    resp = await client.post(f"/profiles/{user_id}", json={"role": "creator"})
    assert resp.status_code == 200
    assert resp.json()["role"] == "creator"
    assert await market.balance(user_id) == 100


async def test_profile_patch(client, market):
    user_id = await market.user()
    resp = await client.patch(f"/profiles/{user_id}", json={"city": "Atlanta", "bio": "Director"})
    assert resp.status_code == 200
    assert resp.json()["city"] == "Atlanta"
    assert resp.json()["bio"] == "Director"


async def test_unknown_wallet_is_not_found(client):
    resp = await client.get(f"/wallets/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFound"


async def test_demo_topup_adds_credits_and_logs_transaction(client, market):
    user_id = await market.user()
    resp = await client.post(f"/wallets/{user_id}/demo-topup", json={"amount": 500})
    assert resp.status_code == 200
    assert resp.json()["new_balance"] == 500

    txs = (await client.get(f"/wallets/{user_id}/transactions")).json()
    assert len(txs) == 1
    assert txs[0]["kind"] == TxKind.DEMO_TOPUP
    assert txs[0]["amount"] == 500
    assert txs[0]["balance_after"] == 500


async def test_demo_topup_rejects_bad_amounts(client, market):
    user_id = await market.user()
    resp = await client.post(f"/wallets/{user_id}/demo-topup", json={"amount": 0})
    assert resp.status_code == 400
    resp = await client.post(f"/wallets/{user_id}/demo-topup", json={"amount": settings.DEMO_TOPUP_MAX + 1})
    assert resp.status_code == 400
    assert await market.balance(user_id) == 0


async def test_demo_topup_can_be_disabled(client, market, monkeypatch):
    user_id = await market.user()
    monkeypatch.setattr(settings, "DEMO_TOPUP_ENABLED", False)
    resp = await client.post(f"/wallets/{user_id}/demo-topup", json={"amount": 50})
    assert resp.status_code == 404


async def test_credit_purchase_is_settled_once_per_reference(client, market):
    user_id = await market.user()
    payload = {"amount": 300, "external_ref": "cs_test_123"}
    first = await client.post(f"/wallets/{user_id}/credits", json=payload)
    second = await client.post(f"/wallets/{user_id}/credits", json=payload)
    assert first.json()["new_balance"] == 300
    assert second.json()["new_balance"] == 300

    other = await market.user()
    resp = await client.post(f"/wallets/{other}/credits", json=payload)
    assert resp.status_code == 409


async def test_adjust_never_goes_negative(session, market):
    user_id = await market.user(credits=40)
    with pytest.raises(InsufficientFunds):
        await run_transaction(session, crud.adjust, user_id, -41, TxKind.HOLD)
    assert await market.balance(user_id) == 40
    assert await market.ledger_sum(user_id) == 40


async def test_adjust_validates_input(session, market):
    user_id = await market.user()
    with pytest.raises(ValidationError):
        await run_transaction(session, crud.adjust, user_id, 10, "gift")
    with pytest.raises(ValidationError):
        await run_transaction(session, crud.adjust, user_id, 0, TxKind.CREDIT)
    with pytest.raises(NotFound):
        await run_transaction(session, crud.adjust, uuid.uuid4(), 10, TxKind.CREDIT)


async def test_balance_reconciles_with_ledger(session, market):
    user_id = await market.user(credits=1000)
    await run_transaction(session, crud.adjust, user_id, -250, TxKind.HOLD)
    await run_transaction(session, crud.adjust, user_id, 75, TxKind.PAYOUT_CREDIT)
    await run_transaction(session, crud.adjust, user_id, 250, TxKind.REFUND)
    assert await market.balance(user_id) == 1075
    assert await market.ledger_sum(user_id) == 1075


async def test_concurrent_first_access_returns_one_profile(client):
    user_id = uuid.uuid4()

    async def ensure():
        async with AsyncSessionLocal() as session:
            profile = await run_transaction(session, crud.ensure_profile, user_id, "twin@example.com")
            return profile.user_id

    assert await asyncio.gather(ensure(), ensure()) == [user_id, user_id]
    txs = (await client.get(f"/wallets/{user_id}/transactions")).json()
    assert txs == []
    assert (await client.get(f"/wallets/{user_id}")).json()["balance"] == 0
