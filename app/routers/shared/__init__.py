from .delivery_stats import delivery_stats_router
from .health import health_router

__all__ = ["delivery_stats_router", "health_router"]
