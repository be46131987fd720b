from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

ENV_FILE = Path(".env")

DEFAULT_BACKENDS: tuple[str, ...] = ("mem://media",)
DEFAULT_AUTH_PERMISSIONS: tuple[str, ...] = ("*",)

# S3 rejects parts below 5 MiB (except the last one)
MIN_PART_SIZE_BYTES = 5 * 1024 * 1024


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    FILER_BACKENDS: list[str] = field(default_factory=lambda: list(DEFAULT_BACKENDS))
    FILER_CREATE_DIRS: bool = True
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str | None = None
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str = "path"
    STORAGE_PART_SIZE_BYTES: int = MIN_PART_SIZE_BYTES
    LIST_PAGE_SIZE: int = 1000
    ENABLE_METRICS: bool = True
    API_KEY_ENABLED: bool = False
    API_KEY: str | None = None
    CORS_ENABLED: bool = False
    CORS_ORIGINS: list[str] = field(default_factory=list)
    TRACE_HTTP: bool = False
    AUTH_ENABLED: bool = False
    AUTH_ALLOW_ANONYMOUS: bool = False
    AUTH_TOKEN_SECRET: str | None = None
    AUTH_TOKEN_ALGORITHM: str = "HS256"
    AUTH_TOKEN_AUDIENCE: str | None = None
    AUTH_TOKEN_ISSUER: str | None = None
    AUTH_TOKEN_LEEWAY: int = 0
    AUTH_DEFAULT_PERMISSIONS: list[str] = field(
        default_factory=lambda: list(DEFAULT_AUTH_PERMISSIONS)
    )

    def __post_init__(self) -> None:
        if self.STORAGE_PART_SIZE_BYTES < MIN_PART_SIZE_BYTES:
            raise ValueError(
                f"STORAGE_PART_SIZE_BYTES must be at least {MIN_PART_SIZE_BYTES} bytes."
            )
        if self.LIST_PAGE_SIZE <= 0:
            raise ValueError("LIST_PAGE_SIZE must be positive.")

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        backends_env = os.environ.get("FILER_BACKENDS")
        if backends_env is None:
            backends = list(DEFAULT_BACKENDS)
        else:
            backends = _as_list(backends_env)

        auth_default_permissions_env = os.environ.get("AUTH_DEFAULT_PERMISSIONS")
        if auth_default_permissions_env is None:
            auth_default_permissions = list(DEFAULT_AUTH_PERMISSIONS)
        else:
            auth_default_permissions = _as_list(auth_default_permissions_env)

        return cls(
            FILER_BACKENDS=backends,
            FILER_CREATE_DIRS=_as_bool(
                os.environ.get("FILER_CREATE_DIRS"), cls.FILER_CREATE_DIRS
            ),
            S3_ENDPOINT_URL=os.environ.get("S3_ENDPOINT_URL"),
            S3_REGION=os.environ.get("S3_REGION"),
            S3_ACCESS_KEY_ID=os.environ.get("S3_ACCESS_KEY_ID"),
            S3_SECRET_ACCESS_KEY=os.environ.get("S3_SECRET_ACCESS_KEY"),
            S3_USE_SSL=_as_bool(os.environ.get("S3_USE_SSL"), cls.S3_USE_SSL),
            S3_ADDRESSING_STYLE=os.environ.get(
                "S3_ADDRESSING_STYLE", cls.S3_ADDRESSING_STYLE
            ),
            STORAGE_PART_SIZE_BYTES=int(
                os.environ.get("STORAGE_PART_SIZE_BYTES", cls.STORAGE_PART_SIZE_BYTES)
            ),
            LIST_PAGE_SIZE=int(os.environ.get("LIST_PAGE_SIZE", cls.LIST_PAGE_SIZE)),
            ENABLE_METRICS=_as_bool(
                os.environ.get("ENABLE_METRICS"), cls.ENABLE_METRICS
            ),
            API_KEY_ENABLED=_as_bool(
                os.environ.get("API_KEY_ENABLED"), cls.API_KEY_ENABLED
            ),
            API_KEY=os.environ.get("API_KEY"),
            CORS_ENABLED=_as_bool(os.environ.get("CORS_ENABLED"), cls.CORS_ENABLED),
            CORS_ORIGINS=_as_list(os.environ.get("CORS_ORIGINS")),
            TRACE_HTTP=_as_bool(os.environ.get("TRACE_HTTP"), cls.TRACE_HTTP),
            AUTH_ENABLED=_as_bool(os.environ.get("AUTH_ENABLED"), cls.AUTH_ENABLED),
            AUTH_ALLOW_ANONYMOUS=_as_bool(
                os.environ.get("AUTH_ALLOW_ANONYMOUS"), cls.AUTH_ALLOW_ANONYMOUS
            ),
            AUTH_TOKEN_SECRET=os.environ.get("AUTH_TOKEN_SECRET"),
            AUTH_TOKEN_ALGORITHM=os.environ.get(
                "AUTH_TOKEN_ALGORITHM", cls.AUTH_TOKEN_ALGORITHM
            ),
            AUTH_TOKEN_AUDIENCE=os.environ.get("AUTH_TOKEN_AUDIENCE"),
            AUTH_TOKEN_ISSUER=os.environ.get("AUTH_TOKEN_ISSUER"),
            AUTH_TOKEN_LEEWAY=int(
                os.environ.get("AUTH_TOKEN_LEEWAY", cls.AUTH_TOKEN_LEEWAY)
            ),
            AUTH_DEFAULT_PERMISSIONS=auth_default_permissions,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
