"""
API Module - REST Interface

Exposes the node's session over HTTP.
"""

from .rest import create_app, run_api_server

__all__ = ['create_app', 'run_api_server']
