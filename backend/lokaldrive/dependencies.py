"""FastAPI dependencies resolving the instances built in the app lifespan."""
from fastapi import Request

from lokaldrive.config import Settings
from lokaldrive.services.enrichment import EnrichmentGateway
from lokaldrive.services.file_repository import FileRepository


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_repository(request: Request) -> FileRepository:
    return request.app.state.repository


def get_enrichment_gateway(request: Request) -> EnrichmentGateway:
    return request.app.state.enrichment
