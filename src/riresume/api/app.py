from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from riresume.api.routes import router as api_router
from riresume.config import get_settings
from riresume.db.init import init_database
from riresume.errors import (
    AnalysisLockedError,
    AuthorizationError,
    CallableFunctionError,
    InsufficientBalanceError,
    InvalidTaskTransition,
    NotFoundError,
    NothingToPromoteError,
    PaymentError,
    RiResumeError,
)

ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (InsufficientBalanceError, 402),
    (NothingToPromoteError, 409),
    (AnalysisLockedError, 409),
    (InvalidTaskTransition, 409),
    (CallableFunctionError, 502),
    (PaymentError, 400),
    (ValueError, 400),
]


def _status_for(exc: Exception) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def _handle_error(request: Request, exc: Exception) -> JSONResponse:
    content: dict[str, object] = {"detail": str(exc)}
    if isinstance(exc, InsufficientBalanceError):
        content |= {"balance": exc.balance, "cost": exc.cost}
    return JSONResponse(content, status_code=_status_for(exc))


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(title=settings.app_name)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RiResumeError, _handle_error)
    app.add_exception_handler(ValueError, _handle_error)

    @app.on_event("startup")
    def _startup() -> None:
        init_database()

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(api_router)
    return app
