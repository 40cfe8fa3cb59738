# FILE: scripts/backfill_products.py
"""
Rellena slug, etiquetas normalizadas, stock agregado y vector de embedding de
todos los productos del catálogo.

Uso:
    python -m scripts.backfill_products [--dry] [--only-missing] [--batch-size N]
"""
import argparse
import asyncio
import sys

from dotenv import load_dotenv
load_dotenv()

import httpx
import structlog

from app.core.logging_config import setup_logging
setup_logging()

from app.core.config import settings
from app.application.options import EmbeddingOptions
from app.application.use_cases.backfill_product_vectors_use_case import BackfillProductVectorsUseCase
from app.db.mongo_client import close_mongo_client, get_database
from app.infrastructure.catalog.mongo_catalog_adapter import MongoProductCatalogAdapter
from app.infrastructure.embedding_models.hf_feature_extraction_adapter import HuggingFaceEmbeddingAdapter

log = structlog.get_logger("scripts.backfill_products")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill product slugs, stock and embedding vectors.")
    parser.add_argument("--dry", action="store_true", help="Log the planned updates without writing them.")
    parser.add_argument("--only-missing", action="store_true", help="Only process products without a vector.")
    parser.add_argument("--batch-size", type=int, default=settings.BACKFILL_BATCH_SIZE, help="Documents per embedding batch.")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    database = get_database(settings.MONGODB_URI, settings.MONGODB_DB_NAME)
    catalog = MongoProductCatalogAdapter(
        database[settings.PRODUCTS_COLLECTION],
        database[settings.UNIT_PRICES_COLLECTION],
    )

    async with httpx.AsyncClient(timeout=settings.HTTP_CLIENT_TIMEOUT) as http_client:
        embedding_adapter = HuggingFaceEmbeddingAdapter(
            http_client,
            EmbeddingOptions(
                endpoint_url=settings.embedding_endpoint_url,
                api_token=settings.HF_TOKEN.get_secret_value(),
                model_name=settings.HF_EMBED_MODEL,
                dimension=settings.EMBEDDING_DIMENSION,
                max_input_chars=settings.EMBEDDING_MAX_INPUT_CHARS,
                max_retries=settings.EMBEDDING_MAX_RETRIES,
                backoff_base_seconds=settings.EMBEDDING_BACKOFF_BASE_SECONDS,
                timeout_seconds=settings.EMBEDDING_TIMEOUT_SECONDS,
            ),
        )
        use_case = BackfillProductVectorsUseCase(catalog, embedding_adapter, batch_size=args.batch_size)
        try:
            report = await use_case.execute(only_missing=args.only_missing, dry_run=args.dry)
        finally:
            await close_mongo_client()

    log.info(
        "Backfill report",
        total=report.total,
        processed=report.processed,
        updated=report.updated,
        failed=len(report.failed_ids),
        dry_run=report.dry_run,
    )
    return 0


def main():
    args = parse_args()
    log.info("Starting catalog backfill...", dry_run=args.dry, only_missing=args.only_missing, batch_size=args.batch_size)
    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        log.info("Backfill interrupted.")
        exit_code = 130
    except Exception as e:
        log.critical("Backfill failed", error=str(e), exc_info=True)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
