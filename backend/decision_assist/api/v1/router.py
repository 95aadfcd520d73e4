from fastapi import APIRouter

from decision_assist.api.v1.endpoints import ai

api_router = APIRouter(prefix="/api/v1")

# AI Decision Assist API
api_router.include_router(ai.router)
