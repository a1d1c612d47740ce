"""Shared Pydantic schemas."""
from pydantic import BaseModel

from lokaldrive.schemas.base import CamelORMModel


class DeleteResponse(BaseModel):
    deleted: bool = True
    id: str = ""


class HealthResponse(CamelORMModel):
    status: str = "ok"
    metadata_backend: str
    file_count: int


class ServerInfoResponse(CamelORMModel):
    port: int
    ips: list[str]
    urls: list[str]
