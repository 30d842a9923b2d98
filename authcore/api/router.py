"""authcore API Router - aggregates all API routes."""

from fastapi import APIRouter

from authcore.api import admin_tokens, auth, health, oauth

api_router = APIRouter()

# Order matters: /auth/{provider} would otherwise capture /auth/me and friends
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(oauth.router)
api_router.include_router(admin_tokens.router)
