"""API router for ASK endpoints."""

from fastapi import APIRouter

from app.api import admin, ask, ask_plan, ask_stream, ask_timer, ask_token, insights

router = APIRouter()

# Token routes first: /ask/token/{token} must not be captured by /ask/{key}/...
router.include_router(ask_token.router, tags=["ask"])

# Conversation: external backend, init, respond
router.include_router(ask.router, tags=["ask"])

# Streamed replies and guest participants
router.include_router(ask_stream.router, tags=["ask"])

# Timers and conversation plans
router.include_router(ask_timer.router, tags=["ask"])
router.include_router(ask_plan.router, tags=["ask"])

# Insights
router.include_router(insights.router, tags=["insights"])

# Admin: participants and embeddings
router.include_router(admin.router)
