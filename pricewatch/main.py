"""
FastAPI application for the PriceWatch price intelligence API.

Routers only handle HTTP concerns; search, analysis and tracking live in
the price intelligence service.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pricewatch.config import settings
from pricewatch.services import price_intelligence_service
from pricewatch.routers import search, products, watchlists, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Opens the database and builds the workflow on startup, drops them on shutdown.
    """
    logger.info("Initializing price intelligence service...")
    await price_intelligence_service.initialize()
    logger.info("Service initialized successfully.")
    yield

    await price_intelligence_service.shutdown()
    logger.info("Application shutting down.")


app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    lifespan=lifespan,
    description="Product search, AI market analysis and price tracking across Indian e-commerce platforms.",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"]
)

app.include_router(search.router)
app.include_router(products.router)
app.include_router(watchlists.router)
app.include_router(health.router)
