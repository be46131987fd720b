"""Object identifiers of the form ``scheme://host/path[?query]``.

Paths are kept without a leading separator. A trailing separator is kept
because it carries intent: ``docs/`` names a prefix, ``docs`` names an
object (or a prefix when no such object exists).
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

from filer.common.errors import MalformedIdentifierError

SEPARATOR = "/"
SCHEMES = frozenset({"file", "mem", "s3"})


def normalize_path(raw: str) -> str:
    """Collapse duplicate separators and ``.`` segments; reject ``..``."""
    segments: list[str] = []
    for segment in raw.split(SEPARATOR):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise MalformedIdentifierError(f"Path may not contain '..': {raw!r}")
        segments.append(segment)
    path = SEPARATOR.join(segments)
    if path and raw.endswith(SEPARATOR):
        path += SEPARATOR
    return path


@dataclass(frozen=True, slots=True)
class Identifier:
    scheme: str
    host: str
    path: str = ""
    query: str = ""

    def __str__(self) -> str:
        value = f"{self.scheme}://{self.host}/{self.path}"
        if self.query:
            value += f"?{self.query}"
        return value

    @property
    def is_prefix(self) -> bool:
        return self.path == "" or self.path.endswith(SEPARATOR)

    def join(self, path: str) -> "Identifier":
        """Return the identifier of ``path`` nested under this one."""
        child = normalize_path(path)
        if not child:
            return self
        base = self.path.rstrip(SEPARATOR)
        combined = f"{base}{SEPARATOR}{child}" if base else child
        return Identifier(scheme=self.scheme, host=self.host, path=combined)


def resolve(raw: str) -> Identifier:
    """Parse ``raw`` into an :class:`Identifier`.

    Only the syntax is checked; whether a backend serves the identifier is
    decided by the registry.

    Raises:
        MalformedIdentifierError: If the scheme is unknown, the host is
            missing, or the path escapes upwards.
    """
    if not raw or "://" not in raw:
        raise MalformedIdentifierError(f"Malformed identifier: {raw!r}")
    try:
        parts = urlsplit(raw)
    except ValueError as exc:
        raise MalformedIdentifierError(f"Malformed identifier: {raw!r}") from exc

    scheme = parts.scheme.lower()
    if scheme not in SCHEMES:
        raise MalformedIdentifierError(f"Unsupported scheme {scheme!r} in {raw!r}")
    if not parts.netloc:
        raise MalformedIdentifierError(f"Identifier has no host: {raw!r}")

    return Identifier(
        scheme=scheme,
        host=parts.netloc,
        path=normalize_path(unquote(parts.path)),
        query=parts.query,
    )


def relative_key(identifier: Identifier, prefix: Identifier) -> str:
    """Return the key of ``identifier`` relative to a backend ``prefix``.

    The result is ``""`` when the identifier is not under the prefix, ``"/"``
    when it names the prefix itself, and otherwise the remainder with a
    leading separator. Prefix matching stops at segment boundaries, so
    ``mem://x/media`` does not contain ``mem://x/mediafiles``.
    """
    if identifier.scheme != prefix.scheme or identifier.host != prefix.host:
        return ""

    base = prefix.path.rstrip(SEPARATOR)
    path = identifier.path
    if not base:
        remainder = path
    elif path in (base, base + SEPARATOR):
        return SEPARATOR
    elif path.startswith(base + SEPARATOR):
        remainder = path[len(base) + 1 :]
    else:
        return ""

    if not remainder:
        return SEPARATOR
    return SEPARATOR + remainder


def storage_key(relative: str) -> str:
    """Strip the leading separator from a :func:`relative_key` result."""
    return relative[1:] if relative.startswith(SEPARATOR) else relative


__all__ = [
    "Identifier",
    "SCHEMES",
    "SEPARATOR",
    "normalize_path",
    "relative_key",
    "resolve",
    "storage_key",
]
