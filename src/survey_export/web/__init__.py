"""
Survey Export HTTP surface.

Provides a Flask app exposing the export pipeline over HTTP.

Usage:
    survey-export serve --port 5000
"""
from .app import app

__all__ = ["app"]
