"""V1 API router -- aggregates all endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.app.api.v1 import auth, health, meet

router = APIRouter()

router.include_router(health.router)
router.include_router(auth.router)
# Last: /{slug} matches any single path segment
router.include_router(meet.router)
