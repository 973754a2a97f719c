"""
HTTP API for a running drive.
This module exposes file, listing and access operations over FastAPI.
"""

from .api_server import APIHandler, status_for

__all__ = ['APIHandler', 'status_for']
