"""Store service repositories package."""

from services.store_service.repositories.accounts import AccountRepository
from services.store_service.repositories.catalog import CatalogRepository

__all__ = ["AccountRepository", "CatalogRepository"]
