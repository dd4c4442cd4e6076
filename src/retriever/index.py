"""
Context indexer / retriever over the reference job corpus.

Embeddings are computed through the resilient client and stored on the
jobs themselves; search is an exact nearest-neighbour scan by Euclidean
distance, which is plenty for a corpus of a handful of job descriptions.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from shared.errors import EvaluatorError, IndexingError, ResponseValidationError
from shared.models import ReferenceJob, ScoredJob
from shared.stores import DocumentStore


class Retriever:
    """Indexes reference jobs and finds the ones closest to a query vector."""

    def __init__(self, client, store: DocumentStore, dimensions: Optional[int] = None):
        """
        Args:
            client: Anything with ``async embed(text, deadline=None)``,
                normally a ``ResilientClient``
            store: Where reference jobs live
            dimensions: Expected embedding size; unchecked when None
        """
        self.client = client
        self.store = store
        self.dimensions = dimensions
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    async def index(self, job: ReferenceJob, deadline: Optional[float] = None) -> ReferenceJob:
        """
        Embed a job's content and store the embedding.

        On failure the stored job is written back without an embedding, so it
        drops out of search until indexed again, and IndexingError is raised.
        """
        async with self._lock_for(job.id):
            try:
                vector = await self.client.embed(job.content, deadline=deadline)
            except (EvaluatorError, ValueError) as e:
                await self._mark_unindexed(job, e)
                raise IndexingError(job.id, e) from e

            if self.dimensions is not None and len(vector) != self.dimensions:
                error = ResponseValidationError(
                    f"embedding has {len(vector)} dimensions, expected {self.dimensions}"
                )
                await self._mark_unindexed(job, error)
                raise IndexingError(job.id, error)

            indexed = job.model_copy(
                update={"embedding": vector, "updated_at": datetime.now(timezone.utc)}
            )
            await self.store.update_document(indexed)

        logger.info(f"Indexed job '{job.title}' ({len(vector)} dimensions)")
        return indexed

    async def _mark_unindexed(self, job: ReferenceJob, error: Exception) -> None:
        logger.error(f"Failed to index job '{job.title}' ({job.id}): {error}")
        await self.store.update_document(
            job.model_copy(update={"embedding": None, "updated_at": datetime.now(timezone.utc)})
        )

    async def index_all(self, jobs: Sequence[ReferenceJob]) -> tuple[int, int]:
        """Index jobs one by one. Returns (indexed, failed)."""
        indexed = failed = 0
        for job in jobs:
            try:
                await self.index(job)
                indexed += 1
            except IndexingError:
                failed += 1
        return indexed, failed

    async def search(self, query_vector: Sequence[float], top_k: int) -> list[ScoredJob]:
        """
        Return up to ``top_k`` indexed jobs by ascending distance to the query.

        Equal distances keep the store's listing order.
        """
        if top_k <= 0:
            return []

        query = np.asarray(query_vector, dtype=float)
        if query.ndim != 1 or query.size == 0:
            raise ValueError("query vector must be a non-empty 1-D vector")
        if not np.all(np.isfinite(query)):
            raise ValueError("query vector contains non-finite values")

        candidates = []
        for job in await self.store.list_documents():
            if not job.is_indexed:
                continue
            if len(job.embedding) != query.size:
                logger.warning(
                    f"Skipping job '{job.title}': embedding has {len(job.embedding)} "
                    f"dimensions, query has {query.size}"
                )
                continue
            candidates.append(job)

        if not candidates:
            logger.warning("No indexed jobs available for retrieval")
            return []

        matrix = np.asarray([job.embedding for job in candidates], dtype=float)
        distances = np.linalg.norm(matrix - query, axis=1)
        order = np.argsort(distances, kind="stable")[:top_k]

        results = [
            ScoredJob(job=candidates[i], distance=float(distances[i])) for i in order
        ]
        logger.debug(f"Retrieved {len(results)} of {len(candidates)} indexed jobs")
        return results
