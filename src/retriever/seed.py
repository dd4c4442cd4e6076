"""
Reference job corpus loader.
Loads job descriptions from YAML and makes sure each one is stored and indexed.
"""

from dataclasses import dataclass
from pathlib import Path

import yaml
from loguru import logger

from shared.errors import IndexingError
from shared.models import ReferenceJob
from shared.stores import DocumentStore

from .index import Retriever


@dataclass
class SeedResult:
    """Outcome of a seeding run."""

    created: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0


def load_reference_jobs(path: Path) -> list[ReferenceJob]:
    """Load job descriptions from a YAML file with a top-level ``jobs`` list."""
    if not path.exists():
        raise FileNotFoundError(f"Job seed file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    jobs = []
    for entry in data.get("jobs", []):
        title = (entry.get("title") or "").strip()
        content = (entry.get("content") or "").strip()
        if not title or not content:
            logger.warning(f"Skipping job seed entry without title or content: {entry!r:.80}")
            continue
        jobs.append(ReferenceJob(title=title, content=content))

    logger.info(f"Loaded {len(jobs)} reference jobs from {path}")
    return jobs


async def index_reference_jobs(
    retriever: Retriever,
    store: DocumentStore,
    jobs: list[ReferenceJob],
    reindex: bool = False,
) -> SeedResult:
    """
    Create missing jobs (matched by title) and index every job lacking an embedding.

    Args:
        retriever: Used to embed and store each job
        store: Document store holding the corpus
        jobs: Jobs to make available for retrieval
        reindex: Recompute embeddings even for jobs that already have one
    """
    result = SeedResult()
    existing = {job.title: job for job in await store.list_documents()}

    for job in jobs:
        stored = existing.get(job.title)
        if stored is None:
            await store.create_document(job)
            stored = job
            result.created += 1
        elif stored.content != job.content:
            stored = stored.model_copy(update={"content": job.content, "embedding": None})
            await store.update_document(stored)

        if stored.is_indexed and not reindex:
            result.skipped += 1
            continue

        try:
            await retriever.index(stored)
            result.indexed += 1
        except IndexingError:
            result.failed += 1

    logger.info(
        f"Seeding complete: {result.created} created, {result.indexed} indexed, "
        f"{result.skipped} already indexed, {result.failed} failed"
    )
    return result
