"""Atomic credit procedures backing the ledger.

Every procedure performs its balance check and mutation in one conditional
statement, so two concurrent callers can never both pass the same check.
Procedures flush but never commit: the calling ledger operation owns the
transaction, which lets a procedure and its transaction-log row land together.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_reservation import (
    RESERVATION_COMMITTED,
    RESERVATION_RELEASED,
    RESERVATION_RESERVED,
    CreditReservation,
)
from models.unified_credit_transaction import UnifiedCreditTransaction
from models.unified_user import UnifiedUser
from models.user import User


SOURCE_PLATFORM = "storywork"


@dataclass
class UnifiedSpendOutcome:
    success: bool
    new_balance: int = 0
    error: Optional[str] = None
    replayed: bool = False


@dataclass
class ReserveOutcome:
    success: bool
    reservation_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CommitOutcome:
    success: bool
    new_balance: int = 0
    error: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def debit_local_balance(db: AsyncSession, *, user_id: str, amount: int) -> Optional[int]:
    """Decrement a local balance only if it covers ``amount``; return the new balance or None."""
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.credit_balance >= amount)
        .values(credit_balance=User.credit_balance - amount)
        .returning(User.credit_balance)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def credit_local_balance(db: AsyncSession, *, user_id: str, amount: int) -> Optional[int]:
    """Increment balance and lifetime credits together; None when the user does not exist."""
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            credit_balance=User.credit_balance + amount,
            lifetime_credits=User.lifetime_credits + amount,
        )
        .returning(User.credit_balance)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def _unified_user_by_email(db: AsyncSession, email: str) -> Optional[UnifiedUser]:
    result = await db.execute(select(UnifiedUser).where(UnifiedUser.email == email))
    return result.scalar_one_or_none()


async def get_or_create_unified_user(
    db: AsyncSession,
    *,
    email: str,
    asm_agent_id: Optional[str] = None,
    storywork_user_id: Optional[str] = None,
    storywork_clerk_id: Optional[str] = None,
) -> str:
    """Return the unified user id for ``email``, creating or back-filling links as needed."""
    normalized = email.strip().lower()
    unified = await _unified_user_by_email(db, normalized)
    if unified is None:
        try:
            async with db.begin_nested():
                unified = UnifiedUser(
                    email=normalized,
                    asm_agent_id=asm_agent_id,
                    storywork_user_id=storywork_user_id,
                    storywork_clerk_id=storywork_clerk_id,
                    credit_balance=0,
                    reserved_credits=0,
                    lifetime_credits=0,
                )
                db.add(unified)
        except IntegrityError:
            # Lost a creation race on the unique email; adopt the winner.
            unified = await _unified_user_by_email(db, normalized)
            if unified is None:
                raise

    if asm_agent_id and not unified.asm_agent_id:
        unified.asm_agent_id = asm_agent_id
    if storywork_user_id and not unified.storywork_user_id:
        unified.storywork_user_id = storywork_user_id
    if storywork_clerk_id and not unified.storywork_clerk_id:
        unified.storywork_clerk_id = storywork_clerk_id
    await db.flush()
    return unified.id


async def _unified_user_exists(db: AsyncSession, unified_user_id: str) -> bool:
    found = await db.scalar(select(UnifiedUser.id).where(UnifiedUser.id == unified_user_id))
    return found is not None


async def _transaction_by_key(db: AsyncSession, idempotency_key: str) -> Optional[UnifiedCreditTransaction]:
    result = await db.execute(
        select(UnifiedCreditTransaction).where(UnifiedCreditTransaction.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def spend_unified_credits(
    db: AsyncSession,
    *,
    unified_user_id: str,
    amount: int,
    transaction_type: str,
    description: str,
    idempotency_key: str,
    source_platform: str = SOURCE_PLATFORM,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None,
) -> UnifiedSpendOutcome:
    """Debit the unreserved unified balance once per idempotency key."""
    if amount <= 0:
        return UnifiedSpendOutcome(success=False, error="Invalid amount")

    prior = await _transaction_by_key(db, idempotency_key)
    if prior is not None:
        return UnifiedSpendOutcome(success=True, new_balance=int(prior.balance_after), replayed=True)

    result = await db.execute(
        update(UnifiedUser)
        .where(
            UnifiedUser.id == unified_user_id,
            UnifiedUser.credit_balance - UnifiedUser.reserved_credits >= amount,
        )
        .values(credit_balance=UnifiedUser.credit_balance - amount)
        .returning(UnifiedUser.credit_balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        if not await _unified_user_exists(db, unified_user_id):
            return UnifiedSpendOutcome(success=False, error="Unified user not found")
        return UnifiedSpendOutcome(success=False, error="Insufficient credits")

    db.add(
        UnifiedCreditTransaction(
            unified_user_id=unified_user_id,
            amount=-amount,
            transaction_type=transaction_type,
            source_platform=source_platform,
            description=description,
            idempotency_key=idempotency_key,
            reference_id=reference_id,
            reference_type=reference_type,
            balance_after=new_balance,
        )
    )
    await db.flush()
    return UnifiedSpendOutcome(success=True, new_balance=int(new_balance))


async def reserve_credits(
    db: AsyncSession,
    *,
    unified_user_id: str,
    amount: int,
    purpose: str,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None,
) -> ReserveOutcome:
    """Hold ``amount`` unified credits without debiting them."""
    if amount <= 0:
        return ReserveOutcome(success=False, error="Invalid amount")

    result = await db.execute(
        update(UnifiedUser)
        .where(
            UnifiedUser.id == unified_user_id,
            UnifiedUser.credit_balance - UnifiedUser.reserved_credits >= amount,
        )
        .values(reserved_credits=UnifiedUser.reserved_credits + amount)
        .returning(UnifiedUser.id)
        .execution_options(synchronize_session=False)
    )
    if result.scalar_one_or_none() is None:
        if not await _unified_user_exists(db, unified_user_id):
            return ReserveOutcome(success=False, error="Unified user not found")
        return ReserveOutcome(success=False, error="Insufficient credits")

    reservation = CreditReservation(
        unified_user_id=unified_user_id,
        amount=amount,
        purpose=purpose,
        reference_id=reference_id,
        reference_type=reference_type,
        status=RESERVATION_RESERVED,
    )
    db.add(reservation)
    await db.flush()
    return ReserveOutcome(success=True, reservation_id=reservation.id)


def _reservation_key(reservation_id: str, idempotency_key: Optional[str]) -> str:
    if idempotency_key:
        return f"reservation_{reservation_id}:{idempotency_key}"
    return f"reservation_{reservation_id}"


async def _reservation_status(db: AsyncSession, reservation_id: str) -> Optional[str]:
    return await db.scalar(select(CreditReservation.status).where(CreditReservation.id == reservation_id))


async def commit_reservation(
    db: AsyncSession,
    *,
    reservation_id: str,
    idempotency_key: Optional[str] = None,
    source_platform: str = SOURCE_PLATFORM,
) -> CommitOutcome:
    """Turn a held reservation into a real debit. Safe to repeat.

    The reservation status alone decides the outcome. A caller key is recorded
    on the ledger row scoped to this reservation.
    """
    claimed = await db.execute(
        update(CreditReservation)
        .where(
            CreditReservation.id == reservation_id,
            CreditReservation.status == RESERVATION_RESERVED,
        )
        .values(status=RESERVATION_COMMITTED, resolved_at=_now())
        .returning(
            CreditReservation.unified_user_id,
            CreditReservation.amount,
            CreditReservation.purpose,
            CreditReservation.reference_id,
            CreditReservation.reference_type,
        )
        .execution_options(synchronize_session=False)
    )
    row = claimed.first()
    if row is None:
        status = await _reservation_status(db, reservation_id)
        if status is None:
            return CommitOutcome(success=False, error="Reservation not found")
        if status == RESERVATION_RELEASED:
            return CommitOutcome(success=False, error="Reservation already released")
        balance = await db.scalar(
            select(UnifiedUser.credit_balance)
            .join(CreditReservation, CreditReservation.unified_user_id == UnifiedUser.id)
            .where(CreditReservation.id == reservation_id)
        )
        return CommitOutcome(success=True, new_balance=int(balance or 0))

    debited = await db.execute(
        update(UnifiedUser)
        .where(UnifiedUser.id == row.unified_user_id)
        .values(
            credit_balance=UnifiedUser.credit_balance - row.amount,
            reserved_credits=UnifiedUser.reserved_credits - row.amount,
        )
        .returning(UnifiedUser.credit_balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = int(debited.scalar_one())
    db.add(
        UnifiedCreditTransaction(
            unified_user_id=row.unified_user_id,
            amount=-int(row.amount),
            transaction_type=row.purpose,
            source_platform=source_platform,
            description=f"Committed reservation {reservation_id}",
            idempotency_key=_reservation_key(reservation_id, idempotency_key),
            reference_id=row.reference_id,
            reference_type=row.reference_type,
            balance_after=new_balance,
        )
    )
    await db.flush()
    return CommitOutcome(success=True, new_balance=new_balance)


async def release_reservation(db: AsyncSession, *, reservation_id: str) -> bool:
    """Drop a held reservation with no balance effect. Releasing twice is a no-op success."""
    released = await db.execute(
        update(CreditReservation)
        .where(
            CreditReservation.id == reservation_id,
            CreditReservation.status == RESERVATION_RESERVED,
        )
        .values(status=RESERVATION_RELEASED, resolved_at=_now())
        .returning(CreditReservation.unified_user_id, CreditReservation.amount)
        .execution_options(synchronize_session=False)
    )
    row = released.first()
    if row is None:
        return await _reservation_status(db, reservation_id) == RESERVATION_RELEASED

    await db.execute(
        update(UnifiedUser)
        .where(UnifiedUser.id == row.unified_user_id)
        .values(reserved_credits=UnifiedUser.reserved_credits - row.amount)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return True
