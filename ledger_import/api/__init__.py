"""API package: provides FastAPI dependencies and route definitions for the application."""

from .dependencies import get_import_service, get_owner_id  # noqa: F401
from .routes import router  # noqa: F401
