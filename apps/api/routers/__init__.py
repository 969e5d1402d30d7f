"""Routers package."""

from . import (
    health,
    feed,
    posts,
)
