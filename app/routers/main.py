from fastapi import APIRouter

from app.routers.shared import delivery_stats_router, health_router
from app.routers.users import users_router

main_router = APIRouter()

# Include domain-based routers
main_router.include_router(health_router, prefix="/health", tags=["Health Checks"])
main_router.include_router(
    delivery_stats_router, prefix="/notifications", tags=["Delivery Analytics"]
)
main_router.include_router(users_router, prefix="/users", tags=["Users"])
