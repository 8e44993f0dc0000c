from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might need env vars
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes.merges import router as merges_router
from middleware.rate_limit import RateLimitConfig, RateLimitMiddleware
from services.graph_client import GraphClient
from services.merge_config import load_merge_settings
from services.merge_engine import MergeOrchestrator


settings = load_merge_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = GraphClient(
        base_url=settings.graph_base_url,
        retry_policy=settings.retry_policy(),
    )
    app.state.merge_settings = settings
    app.state.graph_client = client
    app.state.merge_orchestrator = MergeOrchestrator(client, settings)
    try:
        yield
    finally:
        client.close()


app = FastAPI(title="Observation Workbook Merge", lifespan=lifespan)

if settings.rate_limit_enabled:
    rate_config = RateLimitConfig(
        merge_requests_per_minute=settings.merge_requests_per_minute,
        merge_requests_per_hour=settings.merge_requests_per_hour,
    )
    app.add_middleware(RateLimitMiddleware, config=rate_config)

# Allow any origin in local dev.
# This should be tightened for production.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(merges_router)


@app.get("/")
async def root():
    return {"status": "ok"}
