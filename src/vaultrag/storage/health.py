"""Index and database health verification."""

from __future__ import annotations

import logging

from vaultrag.core.exceptions import VaultRAGError
from vaultrag.core.models import HealthCheck, HealthReport
from vaultrag.storage.base import VectorStoreProtocol
from vaultrag.storage.database import REQUIRED_TABLES, Database
from vaultrag.storage.embeddings import EmbeddingRepository

logger = logging.getLogger(__name__)


async def verify_health(
    db: Database,
    embeddings: EmbeddingRepository,
    vectors: VectorStoreProtocol | None,
) -> HealthReport:
    """Run every check and collect the results; never raises for a failed check.

    Checks
    ------
    integrity
        ``PRAGMA integrity_check`` on the search database.
    tables
        All required tables exist.
    vector_table
        The vector table exists once embeddings have been written.
    vector_count
        Embedding rows and stored vectors agree.
    orphans
        No embedding row points at a deleted document.
    """
    checks: list[HealthCheck] = []

    result = await db.scalar("PRAGMA integrity_check")
    checks.append(HealthCheck(name="integrity", ok=result == "ok", detail=str(result)))

    missing = sorted(set(REQUIRED_TABLES) - await db.table_names())
    checks.append(
        HealthCheck(
            name="tables",
            ok=not missing,
            detail=f"missing: {', '.join(missing)}" if missing else "all present",
        )
    )

    embedding_count = await embeddings.count()
    if vectors is None:
        checks.append(HealthCheck(name="vector_table", ok=False, detail="no vector backend configured"))
    else:
        try:
            has_table = await vectors.has_table()
            vector_count = await vectors.count() if has_table else 0
        except VaultRAGError as exc:
            checks.append(HealthCheck(name="vector_table", ok=False, detail=str(exc)))
        else:
            checks.append(
                HealthCheck(
                    name="vector_table",
                    ok=has_table or embedding_count == 0,
                    detail="present" if has_table else "missing",
                )
            )
            checks.append(
                HealthCheck(
                    name="vector_count",
                    ok=vector_count == embedding_count,
                    detail=f"{embedding_count} embeddings, {vector_count} vectors",
                )
            )

    orphans = await embeddings.find_orphans()
    checks.append(
        HealthCheck(name="orphans", ok=not orphans, detail=f"{len(orphans)} orphaned embeddings")
    )

    report = HealthReport(checks=checks)
    if not report.ok:
        logger.warning(
            "Health check failed: %s",
            ", ".join(c.name for c in checks if not c.ok),
        )
    return report
