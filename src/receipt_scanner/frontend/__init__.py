"""HTTP surface: JSON API over the receipt manager plus optional static UI."""

from .app import create_app

__all__ = ["create_app"]
