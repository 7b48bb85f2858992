"""
Authentication router exposing the caller's Storywork account.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_email
from services.credits import get_or_create_user

router = APIRouter()


class CurrentUserResponse(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None
    credit_balance: int = 0
    lifetime_credits: int = 0
    asm_linked: bool = False
    subscription_status: Optional[str] = None
    subscription_tier: Optional[str] = None


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Get (or lazily create) the current user's account."""
    email = require_email(auth)
    user = await get_or_create_user(auth.external_id, db, email=email, email_verified=auth.email_verified)
    return CurrentUserResponse(
        user_id=user.id,
        email=user.email,
        name=auth.name,
        credit_balance=int(user.credit_balance or 0),
        lifetime_credits=int(user.lifetime_credits or 0),
        asm_linked=bool(user.asm_agent_id),
        subscription_status=user.subscription_status,
        subscription_tier=user.subscription_tier,
    )
