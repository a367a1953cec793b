"""Routers package initialization"""
from .jobs import router as jobs_router
from .settings import router as settings_router
from .audit import router as audit_router

__all__ = ["jobs_router", "settings_router", "audit_router"]
