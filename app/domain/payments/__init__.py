"""Payments domain - Teori checkout orders, provider settings and webhooks"""

from .router import admin_router, router

__all__ = ["router", "admin_router"]
