"""API package initialization."""
from clinic_ledger.api.server import create_app, main

__all__ = ["create_app", "main"]
