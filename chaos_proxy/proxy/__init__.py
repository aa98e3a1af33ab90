from .handler import ProxyHandler
from .route import router

__all__ = ["ProxyHandler", "router"]
