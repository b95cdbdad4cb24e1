import asyncio
import contextlib
import logging
from typing import List, Optional
from uuid import UUID

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from creatorbook import bookings, catalog, crud, records, schemas, workers
from creatorbook.config import settings
from creatorbook.db import Base, engine, get_session, run_transaction
from creatorbook.errors import CreatorbookError
from creatorbook.messaging import close_rabbit, init_rabbit

logger = logging.getLogger(__name__)
app = FastAPI(title="CreatorBook Booking & Escrow Service")

@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.outbox_task = None
    if settings.OUTBOX_ENABLED:
        await init_rabbit()
        app.state.outbox_task = asyncio.create_task(workers.outbox_publisher())

@app.on_event("shutdown")
async def shutdown_event():
    task = getattr(app.state, "outbox_task", None)
    if task:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        await close_rabbit()
    await engine.dispose()


@app.exception_handler(CreatorbookError)
async def domain_error_handler(request: Request, exc: CreatorbookError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": type(exc).__name__},
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors()), "error": "ValidationError"},
    )


# profiles

@app.post("/profiles/{user_id}", response_model=schemas.ProfileRead)
async def ensure_profile(
    user_id: UUID,
    req: Optional[schemas.ProfileEnsure] = None,
    session: AsyncSession = Depends(get_session)
):
    req = req or schemas.ProfileEnsure()
    return await run_transaction(session, crud.ensure_profile, user_id, req.email, req.display_name, req.role)

@app.get("/profiles/{user_id}", response_model=schemas.ProfileRead)
async def get_profile(user_id: UUID, session: AsyncSession = Depends(get_session)):
    return await crud.get_profile(session, user_id)

@app.patch("/profiles/{user_id}", response_model=schemas.ProfileRead)
async def update_profile(
    user_id: UUID,
    req: schemas.ProfileUpdate,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(session, crud.update_profile, user_id, req.model_dump(exclude_unset=True))

@app.post("/profiles/{user_id}/approval", response_model=schemas.ProfileRead)
async def set_approval(
    user_id: UUID,
    req: schemas.ApprovalRequest,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(session, crud.set_approved, user_id, req.approved)


# wallets

@app.get("/wallets/{user_id}", response_model=schemas.WalletRead)
async def get_wallet(user_id: UUID, session: AsyncSession = Depends(get_session)):
    balance = await crud.get_balance(session, user_id)
    return schemas.WalletRead(user_id=user_id, balance=balance)

@app.get("/wallets/{user_id}/transactions", response_model=List[schemas.TransactionRead])
async def list_transactions(
    user_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_session)
):
    return await crud.list_transactions(session, user_id, limit)

@app.post("/wallets/{user_id}/demo-topup", response_model=schemas.BalanceRead)
async def demo_topup(
    user_id: UUID,
    req: schemas.TopupRequest,
    session: AsyncSession = Depends(get_session)
):
    new_balance = await run_transaction(session, crud.demo_topup, user_id, req.amount)
    return schemas.BalanceRead(user_id=user_id, new_balance=new_balance)

@app.post("/wallets/{user_id}/credits", response_model=schemas.BalanceRead)
async def purchase_credits(
    user_id: UUID,
    req: schemas.CreditPurchaseRequest,
    session: AsyncSession = Depends(get_session)
):
    new_balance = await run_transaction(
        session, crud.purchase_credits, user_id, req.amount, req.external_ref, req.note
    )
    return schemas.BalanceRead(user_id=user_id, new_balance=new_balance)


# packages

@app.get("/packages", response_model=List[schemas.PackageRead])
async def list_public_packages(
    service: Optional[str] = None,
    tier: Optional[str] = None,
    session: AsyncSession = Depends(get_session)
):
    return await catalog.list_public(session, service, tier)

@app.get("/sellers/{seller_id}/packages", response_model=List[schemas.PackageRead])
async def list_seller_packages(seller_id: UUID, session: AsyncSession = Depends(get_session)):
    return await catalog.list_by_seller(session, seller_id)

@app.post("/sellers/{seller_id}/packages", response_model=schemas.PackageRead)
async def create_package(
    seller_id: UUID,
    req: schemas.PackageWrite,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(session, catalog.upsert, seller_id, req.model_dump())

@app.put("/sellers/{seller_id}/packages/{package_id}", response_model=schemas.PackageRead)
async def update_package(
    seller_id: UUID,
    package_id: UUID,
    req: schemas.PackageWrite,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(session, catalog.upsert, seller_id, req.model_dump(), package_id)

@app.post("/sellers/{seller_id}/packages/{package_id}/deactivate", response_model=schemas.PackageRead)
async def deactivate_package(
    seller_id: UUID,
    package_id: UUID,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(session, catalog.deactivate, seller_id, package_id)


# bookings

@app.post("/bookings", response_model=schemas.BookingRead)
async def create_booking(
    req: schemas.BookingCreateRequest,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(
        session, bookings.create_booking, req.buyer_id, req.lines, req.requested_date, req.notes
    )

@app.get("/bookings", response_model=List[schemas.BookingRead])
async def list_bookings(user_id: UUID = Query(...), session: AsyncSession = Depends(get_session)):
    return await bookings.list_bookings_for_user(session, user_id)

@app.get("/bookings/{booking_id}", response_model=schemas.BookingDetail)
async def get_booking(booking_id: UUID, session: AsyncSession = Depends(get_session)):
    detail = await records.get_booking_detail(session, booking_id)
    latest = detail["latest_delivery"]
    return schemas.BookingDetail(
        booking=schemas.BookingRead.model_validate(detail["booking"]),
        lines=[schemas.BookingLineRead.model_validate(line) for line in detail["lines"]],
        messages=[schemas.MessageRead.model_validate(msg) for msg in detail["messages"]],
        latest_delivery=schemas.DeliveryRead.model_validate(latest) if latest else None,
    )

@app.post("/bookings/{booking_id}/transition", response_model=schemas.BookingRead)
async def transition_booking(
    booking_id: UUID,
    req: schemas.TransitionRequest,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(
        session, bookings.transition, booking_id, req.event, req.actor, req.link, req.note
    )

@app.post("/bookings/{booking_id}/deliveries", response_model=schemas.DeliveryRead)
async def add_delivery(
    booking_id: UUID,
    req: schemas.DeliveryCreate,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(session, records.add_delivery, booking_id, req.seller_id, req.link, req.note)

@app.post("/bookings/{booking_id}/messages", response_model=schemas.MessageRead)
async def post_message(
    booking_id: UUID,
    req: schemas.MessageCreate,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(session, records.post_message, booking_id, req.sender_id, req.body)

@app.get("/bookings/{booking_id}/messages", response_model=List[schemas.MessageRead])
async def list_messages(booking_id: UUID, session: AsyncSession = Depends(get_session)):
    await bookings.load_booking(session, booking_id)
    return await records.list_messages(session, booking_id)

@app.post("/bookings/{booking_id}/reviews", response_model=schemas.ReviewRead)
async def add_review(
    booking_id: UUID,
    req: schemas.ReviewCreate,
    session: AsyncSession = Depends(get_session)
):
    return await run_transaction(
        session, records.add_review, booking_id, req.buyer_id, req.seller_id, req.rating, req.text
    )


def run():
    logging.basicConfig(level=logging.INFO)
    uvicorn.run("creatorbook.main:app", host="0.0.0.0", port=8000)

if __name__ == "__main__":
    run()
