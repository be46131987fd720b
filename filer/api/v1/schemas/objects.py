"""Pydantic schemas for the filer API endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ObjectOut(BaseModel):
    """Response model for one stored object or directory entry."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    name: str | None = None
    path: str
    size: int = 0
    modtime: datetime | None = Field(default=None, validation_alias="modified")
    type: str | None = Field(default=None, validation_alias="content_type")
    etag: str | None = None
    meta: dict[str, str] = Field(default_factory=dict)
    is_dir: bool = False


class ObjectListOut(BaseModel):
    name: str
    count: int = Field(description="Total matches before offset/limit")
    body: list[ObjectOut] = Field(default_factory=list)


class ObjectDeleteOut(BaseModel):
    name: str
    body: list[ObjectOut] = Field(default_factory=list)


class BackendListOut(BaseModel):
    body: dict[str, str] = Field(default_factory=dict)


class UploadStartOut(BaseModel):
    files: int
    bytes: int = 0


class UploadFileOut(BaseModel):
    index: int
    path: str
    written: int
    bytes: int = 0


class UploadErrorOut(BaseModel):
    index: int
    path: str
    message: str


class UploadDoneOut(BaseModel):
    files: int
    bytes: int
