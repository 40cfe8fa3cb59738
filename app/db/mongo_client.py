# File: app/db/mongo_client.py
from typing import Optional

import structlog
from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

log = structlog.get_logger(__name__)

_client: Optional[AsyncMongoClient] = None


def get_mongo_client(uri: str) -> AsyncMongoClient:
    """
    Obtiene o crea el cliente MongoDB compartido. La conexión es perezosa:
    el primer comando abre el pool.
    """
    global _client
    if _client is None:
        log.info("Creating MongoDB client...")
        _client = AsyncMongoClient(uri, appname="daurtani-chat-service", tz_aware=True)
    return _client


def get_database(uri: str, db_name: str) -> AsyncDatabase:
    return get_mongo_client(uri)[db_name]


async def ping_database() -> bool:
    if _client is None:
        return False
    await _client.admin.command("ping")
    return True


async def close_mongo_client():
    global _client
    if _client is not None:
        log.info("Closing MongoDB client...")
        await _client.close()
        _client = None
        log.info("MongoDB client closed.")
