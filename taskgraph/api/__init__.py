"""
API Module

HTTP status service for a running context.
"""

from .main import create_app, serve

__all__ = ["create_app", "serve"]
