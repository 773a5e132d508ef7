from samap.schemas import common, document, public, sale, signature

__all__ = [
    "common",
    "document",
    "public",
    "sale",
    "signature",
]
