"""FastAPI dependencies for DI (import service, caller identity).

The service is created once by the application lifespan and kept on
``app.state``; routes receive it through ``get_import_service``.
"""

from fastapi import Header, HTTPException, Request

from ledger_import.services.import_service import ImportService


def get_import_service(request: Request) -> ImportService:
    """Provide the application's ImportService for dependency injection."""
    service = getattr(request.app.state, "import_service", None)
    if service is None:
        raise HTTPException(503, "Import service is not ready")
    return service


def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
    """Provide the id of the authenticated caller from the X-Owner-Id header."""
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(401, "Missing X-Owner-Id header")
    return x_owner_id.strip()
