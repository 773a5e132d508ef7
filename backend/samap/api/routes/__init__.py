from . import automation, health, packages, public, sales, signature_links, webhooks

__all__ = [
    "automation",
    "health",
    "packages",
    "public",
    "sales",
    "signature_links",
    "webhooks",
]
