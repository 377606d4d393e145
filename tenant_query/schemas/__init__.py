"""
Public Pydantic schemas used by the service layer, exception handlers and tests.
"""

from .common import EntityRead, ErrorInfo, ErrorResponse, QueryResponse  # noqa: F401
