# app/application/use_cases/backfill_product_vectors_use_case.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import structlog

from app.application.ports.catalog_port import ProductCatalogPort
from app.application.ports.embedding_port import EmbeddingError, EmbeddingPort
from app.core.metrics import BACKFILL_DOCUMENTS_TOTAL
from app.domain.catalog import build_embedding_basis, normalize_string_array, unique_slug
from app.domain.models import BackfillReport, EmbeddingKind, EmbeddingVector

log = structlog.get_logger(__name__)

NORMALIZED_ARRAY_FIELDS = ("tags", "species", "use_cases")


class BackfillProductVectorsUseCase:
    """
    Brings every product document into the shape the vector search expects:
    unique slug, normalized label arrays, stock aggregated from unit prices and
    a `passage` embedding of name, description and tags.

    Document level failures are recorded in the report and never abort the run.
    """

    def __init__(self, catalog: ProductCatalogPort, embedding_port: EmbeddingPort, batch_size: int = 100):
        self.catalog = catalog
        self.embedding_port = embedding_port
        self.batch_size = batch_size

    async def execute(self, only_missing: bool = False, dry_run: bool = False, batch_size: Optional[int] = None) -> BackfillReport:
        size = max(1, batch_size or self.batch_size)
        run_log = log.bind(only_missing=only_missing, dry_run=dry_run, batch_size=size)

        report = BackfillReport(dry_run=dry_run)
        report.total = await self.catalog.count_products(only_missing)
        run_log.info("Starting product backfill", total=report.total)

        # Slugs assigned during this run; the catalog only sees them once written
        assigned_slugs: Set[str] = set()
        batch: List[Dict[str, Any]] = []
        async for doc in self.catalog.iter_products(only_missing):
            batch.append(doc)
            if len(batch) >= size:
                await self._process_batch(batch, report, dry_run, assigned_slugs)
                batch = []
        if batch:
            await self._process_batch(batch, report, dry_run, assigned_slugs)

        if report.failed_ids:
            run_log.warning("Some documents failed to embed/update", failed_ids=report.failed_ids)
        run_log.info("Product backfill finished", processed=report.processed, updated=report.updated)
        return report

    async def plan_update(
        self,
        doc: Dict[str, Any],
        assigned_slugs: Optional[Set[str]] = None,
    ) -> Tuple[Dict[str, Any], str]:
        """
        Returns the `$set` document for `doc` (without vector) and its embedding basis.

        `assigned_slugs` holds the slugs already given to other documents of the
        same run; they count as taken and the slug chosen here is added to it.
        """
        doc_id = doc["_id"]
        update: Dict[str, Any] = {"updatedAt": datetime.now(timezone.utc)}
        reserved = assigned_slugs if assigned_slugs is not None else set()

        async def is_taken(slug: str) -> bool:
            return slug in reserved or await self.catalog.slug_taken(slug, exclude_id=doc_id)

        current_slug = doc.get("slug")
        if not isinstance(current_slug, str) or not current_slug.strip():
            slug = await unique_slug(doc.get("wasteName") or str(doc_id), is_taken)
            update["slug"] = slug
        else:
            slug = await unique_slug(current_slug, is_taken)
            if slug != current_slug:
                update["slug"] = slug
        reserved.add(slug)

        normalized = {field: normalize_string_array(doc.get(field)) for field in NORMALIZED_ARRAY_FIELDS}
        for field, values in normalized.items():
            if values != (doc.get(field) or []):
                update[field] = values

        total_stock = await self.catalog.aggregate_stock(doc_id)
        stock = doc.get("stock")
        if isinstance(stock, bool) or not isinstance(stock, (int, float)) or stock != total_stock:
            update["stock"] = total_stock

        basis = build_embedding_basis(doc.get("wasteName") or "", doc.get("description"), normalized["tags"])
        return update, basis

    async def _embed_all(self, bases: List[str]) -> List[Optional[EmbeddingVector]]:
        if not bases:
            return []
        try:
            return list(await self.embedding_port.embed_batch(bases, EmbeddingKind.PASSAGE))
        except EmbeddingError as e:
            log.warning("Batch embedding failed, falling back to one call per document", error=str(e), size=len(bases))

        vectors: List[Optional[EmbeddingVector]] = []
        for basis in bases:
            try:
                vectors.append(await self.embedding_port.embed(basis, EmbeddingKind.PASSAGE))
            except EmbeddingError as e:
                log.warning("Embedding failed for document", error=str(e))
                vectors.append(None)
        return vectors

    async def _process_batch(
        self,
        docs: List[Dict[str, Any]],
        report: BackfillReport,
        dry_run: bool,
        assigned_slugs: Set[str],
    ):
        planned: List[Tuple[Dict[str, Any], Dict[str, Any], str]] = []
        for doc in docs:
            try:
                update, basis = await self.plan_update(doc, assigned_slugs)
            except Exception:
                log.exception("Backfill planning failed", product_id=str(doc.get("_id")))
                report.failed_ids.append(str(doc.get("_id")))
                BACKFILL_DOCUMENTS_TOTAL.labels(status="failed").inc()
                continue
            planned.append((doc, update, basis))

        to_embed = [i for i, (_, _, basis) in enumerate(planned) if basis]
        vectors = await self._embed_all([planned[i][2] for i in to_embed])
        vector_by_index = dict(zip(to_embed, vectors))

        for index, (doc, update, basis) in enumerate(planned):
            doc_id = str(doc["_id"])
            vector = vector_by_index.get(index)
            if vector:
                update["vector"] = vector
            else:
                if basis:
                    report.failed_ids.append(doc_id)
                if not doc.get("vector"):
                    update["vector"] = []

            if dry_run:
                log.info("[DRY] would update", product_id=doc_id, fields=sorted(update.keys()), slug=update.get("slug"))
                BACKFILL_DOCUMENTS_TOTAL.labels(status="dry_run").inc()
                continue

            try:
                await self.catalog.update_product(doc["_id"], update)
            except Exception:
                log.exception("Backfill update failed", product_id=doc_id)
                if doc_id not in report.failed_ids:
                    report.failed_ids.append(doc_id)
                BACKFILL_DOCUMENTS_TOTAL.labels(status="failed").inc()
                continue
            report.updated += 1
            BACKFILL_DOCUMENTS_TOTAL.labels(status="updated").inc()

        report.processed += len(docs)
        log.info("Batch processed", processed=report.processed, total=report.total)
