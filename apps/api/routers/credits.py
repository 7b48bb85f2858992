"""Credits router: balances, history, and ASM account linking."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_email
from services.credits import get_or_create_user, get_recent_transactions, link_asm_account
from services.unified_credits import get_unified_balance

router = APIRouter()


class LinkAccountRequest(BaseModel):
    asmEmail: Optional[str] = None


@router.post("/link")
async def link_account(
    request: LinkAccountRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    email = require_email(auth)
    asm_email = (request.asmEmail or "").strip()
    if not asm_email:
        raise HTTPException(status_code=400, detail="ASM email is required")

    user = await get_or_create_user(auth.external_id, db, email=email, email_verified=auth.email_verified)
    result = await link_asm_account(user.id, db, asm_email=asm_email)
    if not result.success:
        raise HTTPException(status_code=404, detail=result.error)
    return {"success": True}


@router.get("/balance")
async def credit_balance(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    email = require_email(auth)
    user = await get_or_create_user(auth.external_id, db, email=email, email_verified=auth.email_verified)
    balance = await get_unified_balance(user.id, db)
    return {
        **balance.as_dict(),
        "generationCost": max(int(settings.GENERATION_COST), 0),
    }


@router.get("/transactions")
async def credit_transactions(
    limit: int = Query(default=30, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    email = require_email(auth)
    user = await get_or_create_user(auth.external_id, db, email=email, email_verified=auth.email_verified)
    return {"transactions": await get_recent_transactions(user.id, db, limit=limit)}
