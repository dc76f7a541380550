"""Process-wide service instance and its FastAPI dependency"""

from ephemail.config import settings
from ephemail.database import SessionLocal
from ephemail.service import TempMailService
from ephemail.storage import SqlStorage

service = TempMailService(settings, SqlStorage(SessionLocal))


def get_service() -> TempMailService:
    """
    Dependency for getting the service.

    Usage in FastAPI:
        @app.get("/items")
        def read_items(svc: TempMailService = Depends(get_service)):
            ...
    """
    return service
