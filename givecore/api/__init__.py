# HTTP surface over the lifecycle coordinator and catalog reader.

from .routes import router

__all__ = ["router"]
