"""FastAPI dependencies: the store and settings live on ``app.state``."""

from fastapi import Request

from scenegen.config.settings import Settings
from scenegen.store.repository import DocumentStore


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
