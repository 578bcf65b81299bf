"""CLI input loaders."""

from .registrant_loader import build_registrant_url, entity_from_row, load_registrants

__all__ = [
    "build_registrant_url",
    "entity_from_row",
    "load_registrants",
]
