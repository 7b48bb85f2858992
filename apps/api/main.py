"""
Storywork - FastAPI Backend
Main application entry point: client wiring, error rendering, and API routing.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from generation.client import GenerationGateway
from routers import (
    health,
    auth,
    credits,
    storywork,
    billing,
    webhooks,
)
from services.asm_portal import AsmPortalClient
from services.billing import StripeBilling


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Storywork API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")

    app.state.asm_portal = AsmPortalClient.from_settings()
    app.state.generation_gateway = GenerationGateway.from_settings()
    app.state.billing = StripeBilling.from_settings()
    if not app.state.asm_portal.enabled:
        print("ℹ️ ASM Portal credits disabled (ASM_PORTAL_URL not set).")
    if not app.state.generation_gateway.configured:
        print("⚠️ No AI provider key configured; generation endpoints will fail.")
    yield
    # Shutdown
    await app.state.asm_portal.aclose()
    await app.state.generation_gateway.aclose()
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Storywork API",
    description="Turn real estate stories into social media carousels, paid for with credits",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Render every HTTP error as {"error": message}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in error.get("loc", ()) if part != "body") for error in exc.errors()]
    message = "Invalid request"
    if any(fields):
        message = f"Invalid request: {', '.join(field for field in fields if field)}"
    return JSONResponse(status_code=400, content={"error": message})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(credits.router, prefix="/credits", tags=["Credits"])
app.include_router(storywork.router, prefix="/storywork", tags=["Storywork"])
app.include_router(billing.router, prefix="/stripe", tags=["Billing"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Storywork API",
        "version": "0.1.0",
        "status": "running"
    }
