import json
import logging
import re
import time
import uuid
from typing import Any

from fastapi import Request
from starlette.concurrency import iterate_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from filer.common.config import get_settings
from filer.infra.observability.metrics import LATENCY, REQUESTS

TRACE_BODY_LIMIT = 2048
# 只追踪结构化文本；对象内容、multipart 上传与 SSE 流不缓冲
TRACEABLE_CONTENT_TYPES = ("application/json", "application/problem+json")


def _is_traceable(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type in TRACEABLE_CONTENT_TYPES


class MetricsMiddleware(BaseHTTPMiddleware):
    SENSITIVE_KEYS = {
        "password",
        "secret",
        "token",
        "access_token",
        "api_key",
        "x-api-key",
        "authorization",
    }

    def _mask_mapping(self, obj: Any) -> Any:
        if isinstance(obj, dict):
            masked: dict[str, Any] = {}
            for k, v in obj.items():
                if isinstance(k, str) and k.lower() in self.SENSITIVE_KEYS:
                    masked[k] = "***"
                else:
                    masked[k] = self._mask_mapping(v)
            return masked
        if isinstance(obj, list):
            return [self._mask_mapping(x) for x in obj]
        return obj

    def _mask_body(self, raw_body: bytes) -> str:
        decoded = raw_body.decode("utf-8", errors="replace")
        try:
            parsed = json.loads(decoded)
        except ValueError:
            masked_text = re.sub(
                r"(?i)(token|secret|api_key|password|authorization)\s*[:=]\s*[^\s]+",
                lambda m: m.group(1) + ": ***",
                decoded,
            )
        else:
            masked_text = json.dumps(self._mask_mapping(parsed), ensure_ascii=False)
        if len(masked_text) > TRACE_BODY_LIMIT:
            masked_text = masked_text[:TRACE_BODY_LIMIT] + "...<truncated>"
        return masked_text

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        client_ip = request.headers.get("X-Forwarded-For")
        if client_ip:
            client_ip = client_ip.split(",")[0].strip()
        elif request.client:
            client_ip = request.client.host
        else:
            client_ip = None

        trace_http = get_settings().TRACE_HTTP
        request_body: str | None = None
        if trace_http and _is_traceable(request.headers.get("Content-Type")):
            raw_body = await request.body()
            if raw_body:
                request_body = self._mask_body(raw_body)

                async def receive():
                    return {
                        "type": "http.request",
                        "body": raw_body,
                        "more_body": False,
                    }

                request._receive = receive

        logger = logging.getLogger("http")
        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed = time.perf_counter() - start
            logger.exception(
                "request_error method=%s route=%s status=%s duration_ms=%.3f request_id=%s",
                request.method,
                request.url.path,
                500,
                round(elapsed * 1000, 3),
                request_id,
                extra={
                    "extra": {
                        "method": request.method,
                        "route": request.url.path,
                        "query": request.url.query,
                        "status": 500,
                        "duration_ms": round(elapsed * 1000, 3),
                        "request_id": request_id,
                        "client_ip": client_ip,
                        "exception": repr(exc),
                    }
                },
            )
            raise

        elapsed = time.perf_counter() - start
        status_code = response.status_code

        route_template = request.scope.get("route", None)
        if route_template and hasattr(route_template, "path"):
            route = route_template.path
        else:
            route = request.url.path

        REQUESTS.labels(request.method, route, str(status_code)).inc()
        LATENCY.labels(request.method, route).observe(elapsed)

        # ensure request-id propagation
        if "X-Request-Id" not in response.headers:
            response.headers["X-Request-Id"] = request_id

        response_body: str | None = None
        if trace_http and _is_traceable(response.headers.get("Content-Type")):
            body_bytes = b""
            async for chunk in response.body_iterator:
                body_bytes += chunk
            response.body_iterator = iterate_in_threadpool(iter([body_bytes]))
            if body_bytes:
                response_body = self._mask_body(body_bytes)

        level = logging.INFO
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING

        duration_ms = round(elapsed * 1000, 3)
        extra_payload = {
            "method": request.method,
            "route": route,
            "query": request.url.query,
            "status": status_code,
            "duration_ms": duration_ms,
            "request_id": request_id,
            "client_ip": client_ip,
            "user_agent": request.headers.get("User-Agent"),
        }
        if trace_http:
            extra_payload["request_body"] = request_body
            extra_payload["response_body"] = response_body

        logger.log(
            level,
            "request method=%s route=%s status=%s duration_ms=%.3f "
            "request_id=%s client_ip=%s query=%s",
            request.method,
            route,
            status_code,
            duration_ms,
            request_id,
            client_ip or "-",
            request.url.query or "-",
            extra={"extra": extra_payload},
        )
        return response
