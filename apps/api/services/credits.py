"""Credit ledger: user resolution, local balances, and the spend cascade."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.agent import Agent
from models.credit_transaction import CreditTransaction
from models.unified_user import UnifiedUser
from models.user import User
from services import credit_store
from services.asm_portal import (
    AsmPortalClient,
    RemoteDebited,
    RemoteInsufficientFunds,
    RemoteUnavailable,
)

logger = logging.getLogger(__name__)


class CreditTransactionType(str, Enum):
    BASIC_STORY = "storywork_basic_story"
    VOICE_STORY = "storywork_voice_story"
    CAROUSEL = "storywork_carousel"
    SUBSCRIPTION_CREDIT = "subscription_credit"
    SUBSCRIPTION_BONUS = "subscription_bonus"
    SUBSCRIPTION_MONTHLY = "subscription_monthly"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"


class CreditSource(str, Enum):
    LOCAL = "storywork_credits"
    REMOTE = "asm_credits"
    UNIFIED = "unified_credits"
    SUBSCRIPTION = "storywork_subscription"


@dataclass
class CreditBalance:
    balance: int
    lifetime_earned: int
    lifetime_spent: int
    unified_balance: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "balance": self.balance,
            "lifetimeEarned": self.lifetime_earned,
            "lifetimeSpent": self.lifetime_spent,
        }
        if self.unified_balance is not None:
            payload["unifiedBalance"] = self.unified_balance
        return payload


@dataclass
class SpendResult:
    success: bool
    new_balance: int
    error: Optional[str] = None


@dataclass
class GrantResult:
    success: bool
    new_balance: int
    error: Optional[str] = None


@dataclass
class LinkResult:
    success: bool
    error: Optional[str] = None


def _type_value(transaction_type: Any) -> str:
    return transaction_type.value if isinstance(transaction_type, Enum) else str(transaction_type)


async def _get_user(user_id: str, db: AsyncSession) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def _local_balance(user_id: str, db: AsyncSession) -> int:
    balance = await db.scalar(select(User.credit_balance).where(User.id == user_id))
    return int(balance or 0)


async def get_or_create_user(
    external_id: str,
    db: AsyncSession,
    *,
    email: str,
    email_verified: bool = False,
) -> User:
    """Resolve the Storywork user for an authenticated identity, creating it on first access.

    A record created under another identity (no external id yet) is adopted by
    email only when the identity provider vouches for the email, since an
    unverified match would hand over someone else's balance.
    """
    result = await db.execute(select(User).where(User.external_id == external_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    if email_verified or settings.ALLOW_UNVERIFIED_EMAIL_MERGE:
        result = await db.execute(
            select(User)
            .where(User.email == email, User.external_id.is_(None))
            .order_by(User.created_at)
            .limit(1)
        )
        unclaimed = result.scalar_one_or_none()
        if unclaimed:
            unclaimed.external_id = external_id
            await db.commit()
            logger.info("Adopted existing user %s for external id %s", unclaimed.id, external_id)
            return unclaimed

    user = User(
        external_id=external_id,
        email=email,
        credit_balance=0,
        lifetime_credits=0,
    )
    db.add(user)
    await db.commit()
    return user


async def get_balance(user_id: str, db: AsyncSession) -> CreditBalance:
    row = (
        await db.execute(select(User.credit_balance, User.lifetime_credits).where(User.id == user_id))
    ).first()
    # Recomputed on every call; there is no stored running total for spend.
    spent = await db.scalar(
        select(func.coalesce(func.sum(-CreditTransaction.amount), 0)).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.amount < 0,
        )
    )
    return CreditBalance(
        balance=int(row.credit_balance or 0) if row else 0,
        lifetime_earned=int(row.lifetime_credits or 0) if row else 0,
        lifetime_spent=int(spent or 0),
    )


def _log_transaction(
    db: AsyncSession,
    *,
    user_id: str,
    amount: int,
    transaction_type: Any,
    description: str,
    source: CreditSource,
) -> None:
    db.add(
        CreditTransaction(
            user_id=user_id,
            amount=amount,
            type=_type_value(transaction_type),
            description=description,
            source=source.value,
        )
    )


async def _try_remote_spend(
    user: User,
    db: AsyncSession,
    portal: AsmPortalClient,
    *,
    amount: int,
    transaction_type: Any,
    description: str,
) -> Optional[SpendResult]:
    """Debit the linked ASM agent. None means fall through to the local pool."""
    outcome = await portal.spend(
        agent_id=user.asm_agent_id,
        amount=amount,
        transaction_type=_type_value(transaction_type),
        description=description,
    )
    if isinstance(outcome, RemoteDebited):
        _log_transaction(
            db,
            user_id=user.id,
            amount=-amount,
            transaction_type=transaction_type,
            description=description,
            source=CreditSource.REMOTE,
        )
        try:
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            # The remote debit already happened; do not charge the local pool as well.
            logger.exception("ASM debit for user %s succeeded but the local log row failed", user.id)
        return SpendResult(success=True, new_balance=outcome.new_balance)
    if isinstance(outcome, RemoteInsufficientFunds):
        logger.info("ASM credits insufficient for user %s: %s", user.id, outcome.error)
    elif isinstance(outcome, RemoteUnavailable):
        logger.warning("ASM credits unavailable for user %s: %s", user.id, outcome.reason)
    return None


async def _spend_local_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    transaction_type: Any,
    description: str,
) -> SpendResult:
    try:
        new_balance = await credit_store.debit_local_balance(db, user_id=user_id, amount=amount)
        if new_balance is None:
            return SpendResult(
                success=False,
                new_balance=await _local_balance(user_id, db),
                error="Insufficient credits",
            )
        _log_transaction(
            db,
            user_id=user_id,
            amount=-amount,
            transaction_type=transaction_type,
            description=description,
            source=CreditSource.LOCAL,
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Local credit spend failed for user %s", user_id)
        try:
            balance = await _local_balance(user_id, db)
        except SQLAlchemyError:
            balance = 0
        return SpendResult(success=False, new_balance=balance, error="Failed to update credits")
    return SpendResult(success=True, new_balance=int(new_balance))


async def spend_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    transaction_type: Any,
    description: str,
    portal: Optional[AsmPortalClient] = None,
) -> SpendResult:
    """Spend from the linked ASM agent first, then from the local balance."""
    if int(amount) <= 0:
        return SpendResult(success=False, new_balance=0, error="Invalid amount")

    try:
        user = await _get_user(user_id, db)
    except SQLAlchemyError:
        logger.exception("Failed to load user %s for spend", user_id)
        return SpendResult(success=False, new_balance=0, error="Failed to update credits")
    if user is None:
        return SpendResult(success=False, new_balance=0, error="User not found")

    if user.asm_agent_id and portal is not None:
        remote = await _try_remote_spend(
            user,
            db,
            portal,
            amount=amount,
            transaction_type=transaction_type,
            description=description,
        )
        if remote is not None:
            return remote

    return await _spend_local_credits(
        user_id,
        db,
        amount=amount,
        transaction_type=transaction_type,
        description=description,
    )


async def stage_credit_grant(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    transaction_type: Any,
    description: str,
) -> Optional[int]:
    """Apply a grant and its log row without committing; None when the user does not exist.

    Store errors propagate so the caller can roll back its whole transaction.
    """
    new_balance = await credit_store.credit_local_balance(db, user_id=user_id, amount=int(amount))
    if new_balance is None:
        return None
    _log_transaction(
        db,
        user_id=user_id,
        amount=int(amount),
        transaction_type=transaction_type,
        description=description,
        source=CreditSource.SUBSCRIPTION,
    )
    await db.flush()
    return int(new_balance)


async def add_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    transaction_type: Any,
    description: str,
) -> GrantResult:
    """Grant credits to the local balance and lifetime counter."""
    try:
        new_balance = await stage_credit_grant(
            user_id,
            db,
            amount=amount,
            transaction_type=transaction_type,
            description=description,
        )
        if new_balance is None:
            return GrantResult(success=False, new_balance=0, error="User not found")
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Credit grant failed for user %s", user_id)
        return GrantResult(success=False, new_balance=0, error="Failed to add credits")
    return GrantResult(success=True, new_balance=int(new_balance))


async def link_asm_account(user_id: str, db: AsyncSession, *, asm_email: str) -> LinkResult:
    """Attach the ASM agent registered under ``asm_email`` to this user."""
    normalized = asm_email.strip().lower()
    try:
        agent_id = await db.scalar(select(Agent.id).where(func.lower(Agent.email) == normalized))
    except SQLAlchemyError:
        logger.exception("Agent lookup failed for %s", normalized)
        agent_id = None
    if agent_id is None:
        return LinkResult(success=False, error="No ASM account found with that email")

    try:
        user = await _get_user(user_id, db)
        if user is None:
            return LinkResult(success=False, error="Failed to link account")
        email, external_id = user.email, user.external_id
        user.asm_agent_id = agent_id
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to link ASM agent %s to user %s", agent_id, user_id)
        return LinkResult(success=False, error="Failed to link account")

    # Best effort; the agent link above stands even if this fails.
    await link_unified_user(
        db,
        email=email,
        asm_agent_id=agent_id,
        storywork_user_id=user_id,
        storywork_clerk_id=external_id,
    )
    return LinkResult(success=True)


async def link_unified_user(
    db: AsyncSession,
    *,
    email: str,
    asm_agent_id: Optional[str] = None,
    storywork_user_id: Optional[str] = None,
    storywork_clerk_id: Optional[str] = None,
) -> Optional[UnifiedUser]:
    """Create or back-fill the unified identity for ``email``; None on failure."""
    try:
        unified_user_id = await credit_store.get_or_create_unified_user(
            db,
            email=email,
            asm_agent_id=asm_agent_id,
            storywork_user_id=storywork_user_id,
            storywork_clerk_id=storywork_clerk_id,
        )
        await db.commit()
        result = await db.execute(select(UnifiedUser).where(UnifiedUser.id == unified_user_id))
        return result.scalar_one_or_none()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to link unified user for %s", email)
        return None


async def get_recent_transactions(user_id: str, db: AsyncSession, *, limit: int = 30) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(limit)
    )
    return [
        {
            "id": entry.id,
            "amount": entry.amount,
            "type": entry.type,
            "description": entry.description,
            "source": entry.source,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in result.scalars().all()
    ]
