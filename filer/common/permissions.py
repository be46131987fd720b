from __future__ import annotations


class Permissions:
    OBJECTS_READ = "objects:read"
    OBJECTS_WRITE = "objects:write"
    OBJECTS_DELETE = "objects:delete"

    BACKENDS_READ = "backends:read"


__all__ = ["Permissions"]
