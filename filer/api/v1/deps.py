from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Header, HTTPException, Request

from filer.app.services.object_service import ObjectService
from filer.app.services.registry import BackendRegistry
from filer.app.services.upload_service import UploadService
from filer.common.auth import AuthenticationError, Authenticator, Principal
from filer.common.config import get_settings

logger = logging.getLogger("http")


def get_registry(request: Request) -> BackendRegistry:
    return request.app.state.registry


def get_object_service(
    registry: BackendRegistry = Depends(get_registry),
) -> ObjectService:
    return ObjectService(registry, page_size=get_settings().LIST_PAGE_SIZE)


def get_upload_service(
    objects: ObjectService = Depends(get_object_service),
) -> UploadService:
    return UploadService(objects)


def get_current_principal(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> Principal:
    authenticator = Authenticator(get_settings())
    try:
        return authenticator.authenticate(
            authorization_header=authorization,
            fallback_user_id=x_user_id,
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=401,
            detail={
                "message": str(exc),
                "error_code": "unauthenticated",
            },
        ) from exc


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    settings = get_settings()
    if settings.API_KEY_ENABLED:
        api_key_expected = getattr(settings, "API_KEY", None)
        if not x_api_key or (api_key_expected and x_api_key != api_key_expected):
            raise HTTPException(status_code=401, detail="Invalid API key")


def require_permissions(*permissions: str) -> Callable[..., Principal]:
    """Require ``permissions`` and, for backend routes, access to the backend."""
    if not permissions:
        raise ValueError("At least one permission must be provided")

    def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        missing = principal.missing_permissions(permissions)
        if missing:
            raise HTTPException(
                status_code=403,
                detail={
                    "message": "Missing required permissions",
                    "missing_permissions": missing,
                    "error_code": "permission_denied",
                },
            )
        backend = request.path_params.get("backend")
        if backend and not principal.can_access_backend(backend):
            logger.warning(
                "backend_access_denied user_id=%s backend=%s",
                principal.user_id,
                backend,
            )
            raise HTTPException(
                status_code=403,
                detail={
                    "message": f"Access to backend {backend!r} is not allowed",
                    "error_code": "permission_denied",
                },
            )
        return principal

    return dependency
