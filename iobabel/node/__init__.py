"""
iobabel Node Module

Gateway assembly and the FastAPI application.
"""

from .gateway import Gateway, build_gateway

__all__ = [
    "Gateway",
    "build_gateway",
]
