"""Unified (cross-product) credits: balance view, spends, and reservations."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.unified_user import UnifiedUser
from models.user import User
from services import credit_store
from services.credits import (
    CreditBalance,
    CreditSource,
    SpendResult,
    _log_transaction,
    _spend_local_credits,
    _type_value,
    get_balance,
)

logger = logging.getLogger(__name__)

STORY_REFERENCE_TYPE = "story"


@dataclass
class ReservationResult:
    success: bool
    reservation_id: Optional[str] = None
    error: Optional[str] = None


def new_idempotency_key(user_id: str) -> str:
    """One key per logical spend; reuse it when retrying that spend."""
    return f"storywork_{user_id}_{uuid.uuid4().hex}"


async def get_unified_user_by_external_id(external_id: str, db: AsyncSession) -> Optional[UnifiedUser]:
    result = await db.execute(select(UnifiedUser).where(UnifiedUser.storywork_clerk_id == external_id))
    return result.scalar_one_or_none()


async def _external_id_for(user_id: str, db: AsyncSession) -> Optional[str]:
    return await db.scalar(select(User.external_id).where(User.id == user_id))


async def _available_unified_credits(unified_user_id: str, db: AsyncSession) -> int:
    row = (
        await db.execute(
            select(UnifiedUser.credit_balance, UnifiedUser.reserved_credits).where(UnifiedUser.id == unified_user_id)
        )
    ).first()
    if row is None:
        return 0
    return int(row.credit_balance or 0) - int(row.reserved_credits or 0)


async def get_unified_balance(user_id: str, db: AsyncSession) -> CreditBalance:
    """Local balance plus, when linked, the unreserved unified balance.

    The two pools stay separate; ``balance`` is only a combined view.
    """
    local = await get_balance(user_id, db)
    external_id = await _external_id_for(user_id, db)
    if not external_id:
        return local

    unified = await get_unified_user_by_external_id(external_id, db)
    if unified is None:
        return local

    available = await _available_unified_credits(unified.id, db)
    return CreditBalance(
        balance=local.balance + available,
        lifetime_earned=local.lifetime_earned,
        lifetime_spent=local.lifetime_spent,
        unified_balance=available,
    )


async def spend_unified_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    transaction_type: Any,
    description: str,
    reference_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> SpendResult:
    """Spend from the unified pool, falling back to the local pool only.

    The ASM Portal is never consulted on this path.
    """
    if int(amount) <= 0:
        return SpendResult(success=False, new_balance=0, error="Invalid amount")

    try:
        row = (await db.execute(select(User.id, User.external_id).where(User.id == user_id))).first()
        unified = None
        if row is not None and row.external_id:
            unified = await get_unified_user_by_external_id(row.external_id, db)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to load user %s for unified spend", user_id)
        return SpendResult(success=False, new_balance=0, error="Failed to update credits")
    if row is None:
        return SpendResult(success=False, new_balance=0, error="User not found")

    if unified is not None:
        key = idempotency_key or new_idempotency_key(user_id)
        try:
            outcome = await credit_store.spend_unified_credits(
                db,
                unified_user_id=unified.id,
                amount=amount,
                transaction_type=_type_value(transaction_type),
                description=description,
                idempotency_key=key,
                reference_id=reference_id,
                reference_type=STORY_REFERENCE_TYPE if reference_id else None,
            )
            if outcome.success:
                if not outcome.replayed:
                    _log_transaction(
                        db,
                        user_id=user_id,
                        amount=-amount,
                        transaction_type=transaction_type,
                        description=description,
                        source=CreditSource.UNIFIED,
                    )
                await db.commit()
                return SpendResult(success=True, new_balance=outcome.new_balance)
            logger.info("Unified spend declined for user %s: %s", user_id, outcome.error)
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Unified spend failed for user %s; falling back to local credits", user_id)

    return await _spend_local_credits(
        user_id,
        db,
        amount=amount,
        transaction_type=transaction_type,
        description=description,
    )


async def reserve_unified_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    purpose: str,
    reference_id: Optional[str] = None,
) -> ReservationResult:
    try:
        external_id = await _external_id_for(user_id, db)
        if not external_id:
            return ReservationResult(success=False, error="User not linked to unified system")

        unified = await get_unified_user_by_external_id(external_id, db)
        if unified is None:
            return ReservationResult(success=False, error="Unified user not found")

        outcome = await credit_store.reserve_credits(
            db,
            unified_user_id=unified.id,
            amount=amount,
            purpose=purpose,
            reference_id=reference_id,
            reference_type=STORY_REFERENCE_TYPE if reference_id else None,
        )
        if not outcome.success:
            return ReservationResult(success=False, error=outcome.error or "Unknown error")
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Reservation failed for user %s", user_id)
        return ReservationResult(success=False, error=str(exc))
    return ReservationResult(success=True, reservation_id=outcome.reservation_id)


async def commit_reservation(
    reservation_id: str,
    db: AsyncSession,
    *,
    idempotency_key: Optional[str] = None,
) -> SpendResult:
    try:
        outcome = await credit_store.commit_reservation(
            db,
            reservation_id=reservation_id,
            idempotency_key=idempotency_key,
        )
        if not outcome.success:
            return SpendResult(success=False, new_balance=0, error=outcome.error or "Unknown error")
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Commit failed for reservation %s", reservation_id)
        return SpendResult(success=False, new_balance=0, error=str(exc))
    return SpendResult(success=True, new_balance=outcome.new_balance)


async def release_reservation(reservation_id: str, db: AsyncSession) -> bool:
    try:
        released = await credit_store.release_reservation(db, reservation_id=reservation_id)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Release failed for reservation %s", reservation_id)
        return False
    return released
