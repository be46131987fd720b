import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from filer.api.v1.deps import require_api_key
from filer.api.v1.routers.backends import router as backends_router
from filer.api.v1.routers.objects import router as objects_router
from filer.app.services.registry import BackendRegistry, build_registry
from filer.common.config import get_settings
from filer.common.errors import ConfigurationError
from filer.common.logging import STARTUP_LOGGER, setup_logging
from filer.infra.observability.metrics import metrics_app
from filer.infra.observability.middleware import MetricsMiddleware

ERROR_CODE_BY_STATUS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    412: "precondition_failed",
    413: "payload_too_large",
    415: "unsupported_media_type",
    429: "too_many_requests",
    500: "internal_error",
    502: "bad_gateway",
    503: "service_unavailable",
}


def _normalize_detail(detail):
    if isinstance(detail, dict):
        maybe_code = detail.get("error_code")
        cleaned = {k: v for k, v in detail.items() if k != "error_code"}
        if len(cleaned) == 1 and "message" in cleaned:
            cleaned = cleaned["message"]
        if not cleaned:
            cleaned = None
        return cleaned, maybe_code if isinstance(maybe_code, str) else None
    return detail, None


def _resolve_error_code(status_code: int, override: str | None = None) -> str:
    if override:
        return override
    if status_code == 422:
        return "validation_error"
    return ERROR_CODE_BY_STATUS.get(status_code, "unknown_error")


def create_app(registry: BackendRegistry | None = None) -> FastAPI:
    settings = get_settings()
    setup_logging()
    startup_logger = logging.getLogger(STARTUP_LOGGER)

    if registry is None:
        try:
            registry = build_registry(settings)
        except ConfigurationError as exc:
            startup_logger.error(
                "存储后端配置无效，应用启动中断，请检查 FILER_BACKENDS。"
                " [event=backend_config_failed] (error=%s)",
                exc,
            )
            raise
    registry.freeze()

    app = FastAPI(
        title="Filer Service",
        version="v1.0",
        description="Storage gateway over filesystem, memory and S3-compatible backends",
    )
    app.state.registry = registry

    # Optional CORS
    if settings.CORS_ENABLED:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["ETag", "Last-Modified", "X-Path", "X-Object-Meta"],
        )

    # Routers
    app.include_router(
        backends_router,
        prefix="/api/v1",
        tags=["backends"],
        dependencies=[Depends(require_api_key)],
    )
    app.include_router(
        objects_router,
        prefix="/api/v1",
        tags=["objects"],
        dependencies=[Depends(require_api_key)],
    )

    # Metrics
    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware)
        app.mount("/metrics", metrics_app)

    @app.on_event("startup")
    def on_startup() -> None:
        startup_logger.info(
            "存储后端已就绪，开始接收请求。[event=backends_ready] (backends=%s)",
            ", ".join(registry.names()) or "-",
        )

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        try:
            registry.close()
        except Exception as exc:
            startup_logger.error(
                "关闭存储后端时出错。[event=backend_close_failed] (error=%s)",
                exc,
            )
            raise

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger = logging.getLogger("http")
        normalized_detail, code_override = _normalize_detail(exc.detail)
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "http_exception status=%s detail=%s method=%s path=%s request_id=%s",
            exc.status_code,
            normalized_detail,
            request.method,
            request.url.path,
            request.headers.get("X-Request-Id"),
            extra={
                "extra": {
                    "status": exc.status_code,
                    "detail": normalized_detail,
                    "method": request.method,
                    "route": request.url.path,
                    "request_id": request.headers.get("X-Request-Id"),
                }
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            media_type="application/problem+json",
            headers=getattr(exc, "headers", None),
            content={
                "type": "about:blank",
                "title": "HTTP Error",
                "status": exc.status_code,
                "detail": normalized_detail,
                "error_code": _resolve_error_code(exc.status_code, code_override),
                "instance": str(request.url),
                "request_id": request.headers.get("X-Request-Id"),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return JSONResponse(
            status_code=422,
            media_type="application/problem+json",
            content={
                "type": "about:blank",
                "title": "Validation Error",
                "status": 422,
                # 确保可序列化
                "detail": jsonable_encoder(exc.errors()),
                "error_code": _resolve_error_code(422),
                "instance": str(request.url),
                "request_id": request.headers.get("X-Request-Id"),
            },
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/ready")
    def ready():
        backends = app.state.registry.describe()
        if not backends:
            return {"status": "not_ready", "detail": {"backends": "none registered"}}
        return {"status": "ready", "backends": sorted(backends)}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("filer.main:app", host="0.0.0.0", port=8000, reload=True)
