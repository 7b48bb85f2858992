"""Routers package."""

from . import (
    health,
    auth,
    credits,
    storywork,
    billing,
    webhooks,
)
