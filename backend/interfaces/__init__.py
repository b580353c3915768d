from .session_router import router as session_router
from .station_router import router as station_router
from .playstation_router import router as playstation_router
from .debug_router import router as debug_router

__all__ = [
    "session_router",
    "station_router",
    "playstation_router",
    "debug_router",
]
