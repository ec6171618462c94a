"""Product catalog integration -- resolves internal product UIDs to CRM product ids."""

from src.ordersync.products.client import ProductCatalogClient

__all__ = ["ProductCatalogClient"]
