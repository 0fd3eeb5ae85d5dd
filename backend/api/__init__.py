# api/__init__.py
from api.server import app, lifespan

__all__ = [
    "app",
    "lifespan",
]
