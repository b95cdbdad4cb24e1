import uuid

import pytest

from creatorbook.config import settings


@pytest.fixture
async def booking(market):
    buyer = await market.user(credits=300)
    seller = await market.seller()
    package_id = await market.package(seller, 250)
    created = await market.book(buyer, (seller, package_id))
    return created["id"], buyer, seller


async def _approve(market, booking_id, buyer, seller):
    await market.fire(booking_id, "accept", seller)
    await market.fire(booking_id, "hold", buyer)
    await market.fire(booking_id, "deliver", seller, link="https://drive.example/final")
    resp = await market.fire(booking_id, "approve", buyer)
    assert resp.status_code == 200, resp.text


async def test_messages_are_returned_in_posting_order(client, booking):
    booking_id, buyer, seller = booking
    bodies = ["Hi!", "  Can we shoot Friday?  ", "Works for me", "Great"]
    senders = [buyer, buyer, seller, buyer]
    for sender, body in zip(senders, bodies):
        resp = await client.post(f"/bookings/{booking_id}/messages", json={"sender_id": str(sender), "body": body})
        assert resp.status_code == 200

    listed = (await client.get(f"/bookings/{booking_id}/messages")).json()
    assert [m["body"] for m in listed] == ["Hi!", "Can we shoot Friday?", "Works for me", "Great"]
    assert [m["sender_id"] for m in listed] == [str(s) for s in senders]
    ids = [m["id"] for m in listed]
    assert ids == sorted(ids)

    detail = (await client.get(f"/bookings/{booking_id}")).json()
    assert [m["id"] for m in detail["messages"]] == ids


async def test_blank_message_is_rejected(client, booking):
    booking_id, buyer, _ = booking
    resp = await client.post(f"/bookings/{booking_id}/messages", json={"sender_id": str(buyer), "body": "   "})
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"


async def test_outsiders_cannot_post_messages(client, booking):
    booking_id, _, _ = booking
    resp = await client.post(f"/bookings/{booking_id}/messages", json={"sender_id": str(uuid.uuid4()), "body": "hey"})
    assert resp.status_code == 403


async def test_messaging_allowed_in_any_status(client, market, booking):
    booking_id, buyer, seller = booking
    await market.fire(booking_id, "decline", seller)
    resp = await client.post(f"/bookings/{booking_id}/messages", json={"sender_id": str(buyer), "body": "No worries"})
    assert resp.status_code == 200


async def test_latest_delivery_wins(client, booking):
    booking_id, _, seller = booking
    for link in ("https://drive.example/v1", "https://drive.example/v2"):
        resp = await client.post(f"/bookings/{booking_id}/deliveries", json={"seller_id": str(seller), "link": link})
        assert resp.status_code == 200

    detail = (await client.get(f"/bookings/{booking_id}")).json()
    assert detail["latest_delivery"]["link"] == "https://drive.example/v2"
    assert detail["booking"]["status"] == "requested"


async def test_only_sellers_add_deliveries(client, booking):
    booking_id, buyer, seller = booking
    resp = await client.post(f"/bookings/{booking_id}/deliveries", json={"seller_id": str(buyer), "link": "https://x"})
    assert resp.status_code == 403
    resp = await client.post(f"/bookings/{booking_id}/deliveries", json={"seller_id": str(seller), "link": " "})
    assert resp.status_code == 400


async def test_review_rating_out_of_range(client, market, booking):
    booking_id, buyer, seller = booking
    await _approve(market, booking_id, buyer, seller)
    resp = await client.post(f"/bookings/{booking_id}/reviews", json={
        "buyer_id": str(buyer), "seller_id": str(seller), "rating": 6,
    })
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"


async def test_review_before_approval(client, market, booking):
    booking_id, buyer, seller = booking
    await market.fire(booking_id, "accept", seller)
    await market.fire(booking_id, "hold", buyer)
    await market.fire(booking_id, "deliver", seller, link="https://drive.example/final")
    resp = await client.post(f"/bookings/{booking_id}/reviews", json={
        "buyer_id": str(buyer), "seller_id": str(seller), "rating": 3,
    })
    assert resp.status_code == 409
    assert resp.json()["error"] == "InvalidState"


async def test_one_review_per_seller(client, market, booking):
    booking_id, buyer, seller = booking
    await _approve(market, booking_id, buyer, seller)
    payload = {"buyer_id": str(buyer), "seller_id": str(seller), "rating": 5, "text": "Amazing visuals"}

    resp = await client.post(f"/bookings/{booking_id}/reviews", json=payload)
    assert resp.status_code == 200
    assert resp.json()["rating"] == 5

    resp = await client.post(f"/bookings/{booking_id}/reviews", json=payload)
    assert resp.status_code == 409
    assert resp.json()["error"] == "Conflict"


async def test_only_buyer_reviews_booked_sellers(client, market, booking):
    booking_id, buyer, seller = booking
    await _approve(market, booking_id, buyer, seller)
    resp = await client.post(f"/bookings/{booking_id}/reviews", json={
        "buyer_id": str(seller), "seller_id": str(seller), "rating": 4,
    })
    assert resp.status_code == 403
    resp = await client.post(f"/bookings/{booking_id}/reviews", json={
        "buyer_id": str(buyer), "seller_id": str(uuid.uuid4()), "rating": 4,
    })
    assert resp.status_code == 400


async def test_detail_keeps_the_newest_messages(client, monkeypatch, booking):
    booking_id, buyer, _ = booking
    monkeypatch.setattr(settings, "MESSAGE_PAGE_LIMIT", 2)
    for body in ("one", "two", "three"):
        resp = await client.post(f"/bookings/{booking_id}/messages", json={"sender_id": str(buyer), "body": body})
        assert resp.status_code == 200

    detail = (await client.get(f"/bookings/{booking_id}")).json()
    assert [m["body"] for m in detail["messages"]] == ["two", "three"]
    full = (await client.get(f"/bookings/{booking_id}/messages")).json()
    assert [m["body"] for m in full] == ["one", "two", "three"]
