"""
Storefront Backend Application.

FastAPI application with catalog, session cart, checkout with NETS QR and
PayPal payments, order history and admin tooling.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from loguru import logger

from storefront.api.v1 import router as api_v1_router
from storefront.core.config import settings
from storefront.core.database import async_session_factory, close_db, init_db
from storefront.core.exceptions import ShopError
from storefront.core.seed import seed_database
from storefront.core.session import SessionState, get_session_store, session_middleware
from storefront.modules.payments.nets import get_nets_client
from storefront.modules.payments.paypal import get_paypal_client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting Storefront Backend...")

    # Initialize database
    await init_db()

    if settings.seed_demo_data:
        async with async_session_factory() as db:
            await seed_database(db)

    # Connect session store
    await get_session_store().connect()
    logger.info("Session store connected")

    logger.info("Storefront Backend started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Storefront Backend...")

    await get_nets_client().close()
    await get_paypal_client().close()
    await get_session_store().disconnect()

    # Close database
    await close_db()

    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Storefront Backend

    ## Features

    - **Catalog**: Products, categories, reviews and wishlists
    - **Cart**: Session cart with live stock checks
    - **Checkout**: Cash, card, wallet, NETS QR and PayPal
    - **Admin**: Inventory, orders and user management
    """,
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Session load/save around every request
app.middleware("http")(session_middleware)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> ORJSONResponse:
    """Report recoverable shop errors through the flash sink."""
    session: SessionState | None = getattr(request.state, "session", None)
    messages: list[dict[str, str]] = []
    if session is not None:
        session.flash("error", exc.message)
        messages = session.drain_flashes()

    return ORJSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "redirect": exc.redirect,
            "messages": messages,
        },
    )


# Include API router
app.include_router(api_v1_router, prefix=settings.api_v1_prefix)


@app.get("/health", tags=["System"])
async def health_check() -> dict:
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "version": settings.app_version,
    }
