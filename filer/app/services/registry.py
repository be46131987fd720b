"""Backend registry.

The registry is built once at startup, frozen, and then shared read-only by
every request. Dispatch picks the most specific registered prefix that
contains an identifier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

from filer.common.config import Settings
from filer.common.errors import (
    ConfigurationError,
    MalformedIdentifierError,
    NotHandledError,
    join_errors,
)
from filer.common.logging import STARTUP_LOGGER
from filer.domain.identifier import (
    Identifier,
    relative_key,
    resolve,
    storage_key,
)
from filer.infra.storage.client import StorageDriver
from filer.infra.storage.filesystem import FilesystemStorageDriver
from filer.infra.storage.memory import MemoryStorageDriver
from filer.infra.storage.s3_client import S3StorageDriver

logger = logging.getLogger("filer.storage")


@dataclass(frozen=True, slots=True)
class BackendRegistration:
    name: str
    prefix: Identifier
    driver: StorageDriver

    def identifier(self, path: str = "") -> Identifier:
        """Identifier of ``path`` inside this backend."""
        return self.prefix.join(path)


class BackendRegistry:
    def __init__(self) -> None:
        self._registrations: dict[str, BackendRegistration] = {}
        self._frozen = False

    def __iter__(self) -> Iterator[BackendRegistration]:
        return iter(self._registrations.values())

    def __len__(self) -> int:
        return len(self._registrations)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self, name: str, prefix: Identifier | str, driver: StorageDriver
    ) -> BackendRegistration:
        if self._frozen:
            raise ConfigurationError("Backend registry is frozen")
        if not name:
            raise ConfigurationError("Backend name must not be empty")
        if name in self._registrations:
            raise ConfigurationError(f"Duplicate backend name: {name}")
        if isinstance(prefix, str):
            try:
                prefix = resolve(prefix)
            except MalformedIdentifierError as exc:
                raise ConfigurationError(f"Invalid backend prefix: {exc}") from exc

        for existing in self._registrations.values():
            if relative_key(prefix, existing.prefix) or relative_key(
                existing.prefix, prefix
            ):
                raise ConfigurationError(
                    f"Backend {name!r} prefix {prefix} overlaps backend "
                    f"{existing.name!r} prefix {existing.prefix}"
                )

        registration = BackendRegistration(name=name, prefix=prefix, driver=driver)
        self._registrations[name] = registration
        return registration

    def freeze(self) -> None:
        self._frozen = True

    def dispatch(self, identifier: Identifier) -> tuple[BackendRegistration, str]:
        """Return the backend serving ``identifier`` and its driver key.

        Raises:
            NotHandledError: If no registered prefix contains the identifier.
        """
        best: BackendRegistration | None = None
        best_key = ""
        for registration in self._registrations.values():
            key = relative_key(identifier, registration.prefix)
            if not key:
                continue
            if best is None or len(registration.prefix.path) > len(best.prefix.path):
                best, best_key = registration, key
        if best is None:
            raise NotHandledError(f"No backend handles {identifier}")
        return best, storage_key(best_key)

    def get(self, name: str) -> BackendRegistration:
        try:
            return self._registrations[name]
        except KeyError as exc:
            raise NotHandledError(f"Backend not found: {name}") from exc

    def names(self) -> list[str]:
        return list(self._registrations)

    def describe(self) -> dict[str, str]:
        return {
            name: registration.driver.describe()
            for name, registration in self._registrations.items()
        }

    def close(self) -> None:
        errors: list[BaseException] = []
        for registration in self._registrations.values():
            try:
                registration.driver.close()
            except Exception as exc:
                logger.warning(
                    "backend_close_failed",
                    extra={"extra": {"backend": registration.name, "error": str(exc)}},
                )
                errors.append(exc)
        if errors:
            raise join_errors(errors[0], errors[1:])


def build_registry(settings: Settings) -> BackendRegistry:
    """Create a registry with one driver per ``FILER_BACKENDS`` URL.

    ``mem://name[/prefix]`` and ``s3://bucket[/prefix]`` use the URL as the
    identifier prefix. ``file://name/abs/dir`` serves ``file://name`` from
    the directory ``/abs/dir``.
    """
    startup_logger = logging.getLogger(STARTUP_LOGGER)
    registry = BackendRegistry()
    for url in settings.FILER_BACKENDS:
        try:
            identifier = resolve(url)
        except MalformedIdentifierError as exc:
            raise ConfigurationError(f"Invalid backend URL {url!r}: {exc}") from exc

        prefix = Identifier(
            scheme=identifier.scheme,
            host=identifier.host,
            path=identifier.path.rstrip("/"),
        )
        driver: StorageDriver
        if identifier.scheme == "mem":
            driver = MemoryStorageDriver(url=str(prefix))
        elif identifier.scheme == "file":
            if not identifier.path:
                raise ConfigurationError(
                    f"File backend {url!r} needs a root directory, e.g. file://name/var/lib/data"
                )
            root = "/" + identifier.path.rstrip("/")
            driver = FilesystemStorageDriver(
                url=f"file://{identifier.host}{root}",
                root=root,
                create_dirs=settings.FILER_CREATE_DIRS,
            )
            prefix = Identifier(scheme="file", host=identifier.host)
        else:
            driver = S3StorageDriver(
                settings=settings,
                bucket=identifier.host,
                key_prefix=prefix.path,
                url=str(prefix),
            )

        registry.register(identifier.host, prefix, driver)
        startup_logger.info(
            "已注册存储后端。[event=backend_registered] (name=%s, url=%s)",
            identifier.host,
            driver.describe(),
        )
    return registry


__all__ = ["BackendRegistration", "BackendRegistry", "build_registry"]
