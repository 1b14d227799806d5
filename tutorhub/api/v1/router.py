from fastapi import APIRouter

from tutorhub.api.v1.availability import router as availability_router
from tutorhub.api.v1.sessions import router as sessions_router
from tutorhub.api.v1.subscriptions import router as subscriptions_router
from tutorhub.api.v1.webhooks import router as webhooks_router
from tutorhub.api.v1.weeks import router as weeks_router

api_router = APIRouter()
api_router.include_router(subscriptions_router)
api_router.include_router(weeks_router)
api_router.include_router(sessions_router)
api_router.include_router(availability_router)
api_router.include_router(webhooks_router)
