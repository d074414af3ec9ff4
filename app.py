# app.py
# FastAPI backend for the shift board and its LINE bot.
# - One JSON-file store per process, built here and handed to routers via app.state
# - Store failures mapped to HTTP statuses in one place
# - LINE webhook shares the same store as the web board

import logging
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

# --- Configure structlog + stdlib logging
logging.basicConfig(format="%(message)s", level=logging.INFO,)
structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
)
logger = structlog.get_logger("app")

from bot import ShiftBot  # noqa: E402
from config import AppConfig, load_config  # noqa: E402
from errors import InvalidStatusTransition, SaveFailed, StorageUnavailable, UnknownSettingKey  # noqa: E402
from line_api import LineMessenger  # noqa: E402
from store import ShiftStore  # noqa: E402


# ----------------------------
# Error mapping
# ----------------------------

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable(request: Request, exc: StorageUnavailable):
        logger.error("storage_unavailable", path=request.url.path, error=str(exc))
        return _error(503, "service unavailable")

    @app.exception_handler(SaveFailed)
    async def save_failed(request: Request, exc: SaveFailed):
        logger.error("save_failed", path=request.url.path, error=str(exc))
        return _error(500, "failed to save data")

    @app.exception_handler(InvalidStatusTransition)
    async def invalid_transition(request: Request, exc: InvalidStatusTransition):
        return _error(409, str(exc))

    @app.exception_handler(UnknownSettingKey)
    async def unknown_setting(request: Request, exc: UnknownSettingKey):
        return _error(404, str(exc))

    @app.exception_handler(ValidationError)
    async def invalid_record(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"ok": False, "error": "invalid data", "details": exc.errors(include_url=False)},
        )

    @app.exception_handler(ValueError)
    async def bad_value(request: Request, exc: ValueError):
        return _error(400, str(exc))


# ----------------------------
# FastAPI app
# ----------------------------

def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[ShiftStore] = None,
    messenger: Optional[LineMessenger] = None,
) -> FastAPI:
    config = config or load_config()
    store = store or ShiftStore.from_config(config)
    messenger = messenger or LineMessenger(config.line_channel_secret, config.line_channel_access_token)

    app = FastAPI(title="Shift Board Backend")
    app.state.config = config
    app.state.store = store
    app.state.messenger = messenger
    app.state.bot = ShiftBot(store, messenger, config.public_base_url)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.front_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    from routes.admin import router as admin_router
    from routes.board import router as board_router
    from routes.shifts import router as shifts_router
    from routes.staff import router as staff_router
    from routes.webhook import router as webhook_router
    app.include_router(admin_router)
    app.include_router(shifts_router)
    app.include_router(staff_router)
    app.include_router(board_router)
    app.include_router(webhook_router)

    if not config.line_channel_secret:
        logger.warning("line_channel_secret_missing", detail="webhook will reject every request")
    logger.info("app_created", data_path=str(config.data_path), backup_dir=str(config.backup_path))
    return app


app = create_app()
