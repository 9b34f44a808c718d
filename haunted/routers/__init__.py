"""
Routers Package
"""

from haunted.routers.alexa import router as alexa_router
from haunted.routers.debug import router as debug_router
from haunted.routers.ifttt import router as ifttt_router
from haunted.routers.lights import router as lights_router
from haunted.routers.oauth import router as oauth_router
from haunted.routers.triggers import router as triggers_router

__all__ = [
    "alexa_router",
    "debug_router",
    "ifttt_router",
    "lights_router",
    "oauth_router",
    "triggers_router",
]
