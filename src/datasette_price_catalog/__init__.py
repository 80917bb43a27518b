"""Datasette plugin for a crowdsourced price catalog with contribution moderation."""

from datasette_price_catalog.plugin import (
    permission_allowed,
    register_routes,
    skip_csrf,
    startup,
)

__all__ = [
    "permission_allowed",
    "register_routes",
    "skip_csrf",
    "startup",
]
