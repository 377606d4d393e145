"""
FastAPI integration: exception handlers and request context middleware.
"""

from .errors import install_exception_handlers  # noqa: F401
