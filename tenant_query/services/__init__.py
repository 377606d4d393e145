"""
Service layer orchestrating repositories for a transport layer.
"""

from .base import BaseService, CrudService  # noqa: F401
