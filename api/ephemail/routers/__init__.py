"""Routers package"""

from ephemail.routers.mailboxes import router as mailboxes_router

__all__ = ["mailboxes_router"]
