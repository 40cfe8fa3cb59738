# File: app/infrastructure/catalog/mongo_catalog_adapter.py
from typing import Any, AsyncIterator, Dict

import structlog
from pymongo.errors import PyMongoError

from app.application.ports.catalog_port import CatalogError, ProductCatalogPort

log = structlog.get_logger(__name__)

MISSING_VECTOR_QUERY: Dict[str, Any] = {
    "$or": [{"vector": {"$exists": False}}, {"vector": {"$size": 0}}]
}


class MongoProductCatalogAdapter(ProductCatalogPort):
    """Product (`farmwastes`) and unit price (`unitprices`) collections."""

    def __init__(self, products: Any, unit_prices: Any):
        self._products = products
        self._unit_prices = unit_prices

    @staticmethod
    def _query(only_missing_vectors: bool) -> Dict[str, Any]:
        return dict(MISSING_VECTOR_QUERY) if only_missing_vectors else {}

    async def count_products(self, only_missing_vectors: bool = False) -> int:
        try:
            return await self._products.count_documents(self._query(only_missing_vectors))
        except PyMongoError as e:
            raise CatalogError(f"Failed to count products: {e}") from e

    async def iter_products(self, only_missing_vectors: bool = False) -> AsyncIterator[Dict[str, Any]]:
        try:
            async for doc in self._products.find(self._query(only_missing_vectors)):
                yield doc
        except PyMongoError as e:
            raise CatalogError(f"Failed to iterate products: {e}") from e

    async def slug_taken(self, slug: str, exclude_id: Any = None) -> bool:
        query: Dict[str, Any] = {"slug": slug}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        try:
            return await self._products.find_one(query, {"_id": 1}) is not None
        except PyMongoError as e:
            raise CatalogError(f"Failed to check slug '{slug}': {e}") from e

    async def aggregate_stock(self, product_id: Any) -> int:
        pipeline = [
            {"$match": {"farmWasteId": product_id}},
            {"$group": {"_id": "$farmWasteId", "total": {"$sum": {"$ifNull": ["$stock", 0]}}}},
        ]
        try:
            cursor = await self._unit_prices.aggregate(pipeline)
            rows = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise CatalogError(f"Failed to aggregate stock for {product_id}: {e}") from e
        return int(rows[0]["total"]) if rows else 0

    async def update_product(self, product_id: Any, update: Dict[str, Any]) -> None:
        try:
            await self._products.update_one({"_id": product_id}, {"$set": update})
        except PyMongoError as e:
            raise CatalogError(f"Failed to update product {product_id}: {e}") from e
        log.debug("Product updated", product_id=str(product_id), fields=sorted(update.keys()))
