from . import admin_proposals, health, public, public_social, webhooks

__all__ = [
    "admin_proposals",
    "health",
    "public",
    "public_social",
    "webhooks",
]
