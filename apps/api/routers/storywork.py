"""Storywork router: narrative detection, carousel generation, stories, and brand kits."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import get_db
from generation.client import GenerationError, GenerationGateway, parse_json_response
from generation.models import CarouselContent, StoryTypeDetection
from generation.prompts import STORY_TYPES, detect_story_type_prompt, generate_story_content_prompt
from models.brand_kit import BrandKit
from models.story import Story
from routers.auth_scope import AuthContext, get_auth_context, require_email
from routers.clients import get_asm_portal, get_generation_gateway
from routers.rate_limit import rate_limit
from services.asm_portal import AsmPortalClient
from services.credits import CreditTransactionType, get_or_create_user, spend_credits

router = APIRouter()
logger = logging.getLogger(__name__)

FONT_OPTIONS = ("Inter", "Playfair Display", "Montserrat", "Roboto", "Poppins")
HEX_COLOR_PATTERN = r"^#[0-9a-fA-F]{6}$"


class DetectRequest(BaseModel):
    input: Optional[Any] = None


class GenerateRequest(BaseModel):
    storyId: Optional[str] = None
    storyType: Optional[str] = None
    answers: Optional[Dict[str, Any]] = None


class CreateStoryRequest(BaseModel):
    title: Optional[str] = None
    storyType: str
    rawInput: Optional[str] = None
    answers: Dict[str, Any] = Field(default_factory=dict)


class BrandKitRequest(BaseModel):
    name: str = Field(default="My Brand", min_length=1, max_length=120)
    primary_color: str = Field(default="#ff4533", pattern=HEX_COLOR_PATTERN)
    secondary_color: str = Field(default="#000000", pattern=HEX_COLOR_PATTERN)
    font_family: str = "Inter"
    logo_url: Optional[str] = None
    headshot_url: Optional[str] = None


def _serialize_story(story: Story) -> Dict[str, Any]:
    return {
        "id": story.id,
        "title": story.title,
        "story_type": story.story_type,
        "raw_input": story.raw_input,
        "answers": story.answers or {},
        "generated_content": story.generated_content,
        "status": story.status,
        "created_at": story.created_at.isoformat() if story.created_at else None,
        "updated_at": story.updated_at.isoformat() if story.updated_at else None,
    }


def _serialize_brand_kit(kit: BrandKit) -> Dict[str, Any]:
    return {
        "id": kit.id,
        "name": kit.name,
        "primary_color": kit.primary_color,
        "secondary_color": kit.secondary_color,
        "font_family": kit.font_family,
        "logo_url": kit.logo_url,
        "headshot_url": kit.headshot_url,
        "is_default": bool(kit.is_default),
    }


async def _current_user_id(auth: AuthContext, db: AsyncSession) -> str:
    email = require_email(auth)
    user = await get_or_create_user(auth.external_id, db, email=email, email_verified=auth.email_verified)
    return user.id


async def _get_owned_story(db: AsyncSession, user_id: str, story_id: str) -> Story:
    result = await db.execute(select(Story).where(Story.id == story_id, Story.user_id == user_id))
    story = result.scalar_one_or_none()
    if story is None:
        raise HTTPException(status_code=404, detail="Story not found")
    return story


async def _get_default_brand_kit(db: AsyncSession, user_id: str) -> Optional[BrandKit]:
    result = await db.execute(
        select(BrandKit).where(BrandKit.user_id == user_id, BrandKit.is_default.is_(True)).limit(1)
    )
    return result.scalar_one_or_none()


@router.post("/detect")
async def detect_story_type(
    request: DetectRequest,
    _rate_limit: None = Depends(
        rate_limit("storywork_detect", limit=settings.DETECT_RATE_LIMIT_PER_HOUR, window_seconds=3600)
    ),
    auth: AuthContext = Depends(get_auth_context),
    gateway: GenerationGateway = Depends(get_generation_gateway),
):
    if not request.input or not isinstance(request.input, str):
        raise HTTPException(status_code=400, detail="Input is required")

    try:
        response = await gateway.generate(detect_story_type_prompt(request.input), temperature=0.3)
    except GenerationError as exc:
        logger.error(f"Story detection failed for {auth.external_id}: {exc}")
        raise HTTPException(status_code=500, detail="Failed to detect story type") from exc

    parsed = parse_json_response(response)
    if parsed is None:
        raise HTTPException(status_code=500, detail="Failed to detect story type")
    try:
        detection = StoryTypeDetection(**parsed)
    except ValidationError as exc:
        raise HTTPException(status_code=500, detail="Failed to detect story type") from exc
    return detection.model_dump()


@router.post("/generate")
async def generate_story_content(
    request: GenerateRequest,
    _rate_limit: None = Depends(
        rate_limit("storywork_generate", limit=settings.GENERATE_RATE_LIMIT_PER_HOUR, window_seconds=3600)
    ),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    portal: AsmPortalClient = Depends(get_asm_portal),
    gateway: GenerationGateway = Depends(get_generation_gateway),
):
    require_email(auth)
    if not request.storyId or not request.storyType or not request.answers:
        raise HTTPException(status_code=400, detail="Story ID, type, and answers are required")

    # Build the prompt before charging so an unknown type costs nothing.
    prompt = generate_story_content_prompt(request.storyType, request.answers, auth.name or "Agent")
    if not prompt:
        raise HTTPException(status_code=400, detail="Invalid story type")

    user_id = await _current_user_id(auth, db)
    story = await _get_owned_story(db, user_id, request.storyId)

    credit_result = await spend_credits(
        user_id,
        db,
        amount=max(int(settings.GENERATION_COST), 0),
        transaction_type=CreditTransactionType.CAROUSEL,
        description=f"Story generation: {request.storyId}",
        portal=portal,
    )
    if not credit_result.success:
        if credit_result.error == "Insufficient credits":
            return JSONResponse(
                status_code=402,
                content={"error": credit_result.error, "balance": credit_result.new_balance},
            )
        raise HTTPException(status_code=500, detail=credit_result.error or "Failed to update credits")

    try:
        response = await gateway.generate(prompt, temperature=0.7)
    except GenerationError as exc:
        logger.error(f"Story generation failed for story {request.storyId}: {exc}")
        raise HTTPException(status_code=500, detail="Failed to generate content") from exc

    parsed = parse_json_response(response)
    try:
        content = CarouselContent(**parsed).model_dump() if parsed is not None else None
    except ValidationError:
        content = None
    if content is None:
        logger.warning(f"Unusable generation output for story {request.storyId}")
        raise HTTPException(status_code=500, detail="Failed to generate content")

    try:
        story.generated_content = content
        story.status = "completed"
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception(f"Failed to save generated content for story {request.storyId}")
        raise HTTPException(status_code=500, detail="Failed to save generated content") from exc

    return {
        "success": True,
        "content": content,
        "creditsRemaining": credit_result.new_balance,
    }


@router.post("/stories")
async def create_story(
    request: CreateStoryRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    story_type = STORY_TYPES.get(request.storyType)
    if story_type is None:
        raise HTTPException(status_code=400, detail="Invalid story type")

    user_id = await _current_user_id(auth, db)
    story = Story(
        user_id=user_id,
        title=(request.title or "").strip() or f"{story_type['name']} Story",
        story_type=request.storyType,
        raw_input=request.rawInput,
        answers=request.answers,
        status="draft",
    )
    db.add(story)
    await db.commit()
    await db.refresh(story)
    return _serialize_story(story)


@router.get("/stories")
async def list_stories(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    user_id = await _current_user_id(auth, db)
    result = await db.execute(
        select(Story).where(Story.user_id == user_id).order_by(Story.created_at.desc())
    )
    stories = result.scalars().all()
    return {
        "stories": [_serialize_story(story) for story in stories],
        "stats": {
            "total": len(stories),
            "drafts": sum(1 for story in stories if story.status == "draft"),
            "completed": sum(1 for story in stories if story.status == "completed"),
        },
    }


@router.get("/stories/{story_id}")
async def get_story(
    story_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    user_id = await _current_user_id(auth, db)
    return _serialize_story(await _get_owned_story(db, user_id, story_id))


@router.get("/brand-kit")
async def get_brand_kit(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    user_id = await _current_user_id(auth, db)
    kit = await _get_default_brand_kit(db, user_id)
    if kit is None:
        return {**BrandKitRequest().model_dump(), "id": None, "is_default": True}
    return _serialize_brand_kit(kit)


@router.put("/brand-kit")
async def save_brand_kit(
    request: BrandKitRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    if request.font_family not in FONT_OPTIONS:
        raise HTTPException(status_code=400, detail="Unsupported font family")

    user_id = await _current_user_id(auth, db)
    kit = await _get_default_brand_kit(db, user_id)
    if kit is None:
        kit = BrandKit(user_id=user_id, is_default=True)
        db.add(kit)

    kit.name = request.name
    kit.primary_color = request.primary_color
    kit.secondary_color = request.secondary_color
    kit.font_family = request.font_family
    kit.logo_url = request.logo_url or None
    kit.headshot_url = request.headshot_url or None
    await db.commit()
    await db.refresh(kit)
    return _serialize_brand_kit(kit)
