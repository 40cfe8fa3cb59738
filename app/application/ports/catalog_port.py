import abc
from typing import Any, AsyncIterator, Dict


class CatalogError(Exception):
    """Base exception for catalog persistence errors."""
    pass


class ProductCatalogPort(abc.ABC):
    """
    Write access to product documents, used by maintenance jobs only.
    """

    @abc.abstractmethod
    async def count_products(self, only_missing_vectors: bool = False) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def iter_products(self, only_missing_vectors: bool = False) -> AsyncIterator[Dict[str, Any]]:
        """Iterates raw product documents; with `only_missing_vectors`, only those without a vector."""
        raise NotImplementedError

    @abc.abstractmethod
    async def slug_taken(self, slug: str, exclude_id: Any = None) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    async def aggregate_stock(self, product_id: Any) -> int:
        """Sum of the stock of every unit price of the product."""
        raise NotImplementedError

    @abc.abstractmethod
    async def update_product(self, product_id: Any, update: Dict[str, Any]) -> None:
        raise NotImplementedError
