"""FastAPI entry point for the PlayStation session billing backend."""
from fastapi import FastAPI
import socketio
import structlog

from interfaces import session_router, station_router, playstation_router, debug_router
from interfaces import deps
from interfaces.errors import install_error_handlers
from interfaces.station_router import station_board
from infrastructure.socketio_manager import sio, set_state_provider

logger = structlog.get_logger()

# 设置 Socket.IO 的站点快照来源
set_state_provider(station_board)

app = FastAPI(title="PlayStation Session Billing")

app.include_router(session_router)
app.include_router(station_router)
app.include_router(playstation_router)
app.include_router(debug_router)
install_error_handlers(app)

from fastapi.middleware.cors import CORSMiddleware

app.add_middleware(
    CORSMiddleware,
    allow_origins=deps.settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 将 Socket.IO 挂载到 FastAPI，创建组合 ASGI 应用
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)


@app.get("/health", tags=["health"])
def health_check() -> dict:
    """Expose a minimal health endpoint to help dev tooling."""
    return {
        "status": "ok",
        "configVersion": deps.settings.version,
        "storage": deps.settings.database_backend,
        "clock": deps.settings.clock_mode,
        "notificationsPending": deps.notification_bus.pending_count(),
        "evaluationRunning": deps.evaluation_loop.is_running,
    }


# Background tasks ----------------------------------------------
@app.on_event("startup")
async def _start_background_tasks() -> None:  # pragma: no cover - runtime wiring
    """启动后台任务：通知消费循环 + 定时评估循环"""
    await deps.notification_bus.start()
    deps.evaluation_loop.start()
    logger.info("background_tasks_started")


@app.on_event("shutdown")
async def _stop_background_tasks() -> None:  # pragma: no cover - runtime wiring
    """停止后台任务"""
    await deps.evaluation_loop.stop()
    await deps.notification_bus.stop()
    logger.info("background_tasks_stopped")
