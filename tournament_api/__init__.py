"""
tournament_api - HTTP surface for MetaServe tournaments

Thin FastAPI layer over metaserve.TournamentService. All state lives in the
service; routes only translate JSON to calls and errors to status codes.
"""

from .server import app, create_app

__all__ = ["app", "create_app"]
