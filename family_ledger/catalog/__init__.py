"""Shared catalog (categories and accounts) package."""

from family_ledger.catalog.manager import SharedCatalogManager, by_type, dedupe

__all__ = ["SharedCatalogManager", "by_type", "dedupe"]
