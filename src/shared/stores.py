"""
Store interfaces used by the evaluation core, plus in-memory implementations.

The MongoDB-backed implementations live in ``shared.database``.
"""

import asyncio
from typing import Optional, Protocol

from .errors import DocumentNotFoundError, InvalidTransitionError, TaskNotFoundError
from .models import EvaluationTask, ReferenceJob


class TaskStore(Protocol):
    async def create_task(self, task: EvaluationTask) -> str: ...

    async def update_task(self, task: EvaluationTask) -> None: ...

    async def get_task(self, task_id: str) -> EvaluationTask: ...


class DocumentStore(Protocol):
    async def create_document(self, job: ReferenceJob) -> str: ...

    async def list_documents(self) -> list[ReferenceJob]: ...

    async def get_document(self, job_id: str) -> ReferenceJob: ...

    async def update_document(self, job: ReferenceJob) -> None: ...


class InMemoryTaskStore:
    """Dict-backed task store. Hands out copies, never the stored object."""

    def __init__(self):
        self._tasks: dict[str, EvaluationTask] = {}
        self._lock = asyncio.Lock()

    async def create_task(self, task: EvaluationTask) -> str:
        async with self._lock:
            if task.id in self._tasks:
                raise ValueError(f"Task {task.id} already exists")
            self._tasks[task.id] = task.model_copy(deep=True)
        return task.id

    async def update_task(self, task: EvaluationTask) -> None:
        async with self._lock:
            stored = self._tasks.get(task.id)
            if stored is None:
                raise TaskNotFoundError(f"task {task.id} not found")
            if stored.status.is_terminal:
                raise InvalidTransitionError(
                    f"task {task.id} is already {stored.status.value}"
                )
            self._tasks[task.id] = task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> EvaluationTask:
        async with self._lock:
            stored = self._tasks.get(task_id)
            if stored is None:
                raise TaskNotFoundError(f"task {task_id} not found")
            return stored.model_copy(deep=True)


class InMemoryDocumentStore:
    """Dict-backed reference job store. Listing keeps insertion order."""

    def __init__(self, jobs: Optional[list[ReferenceJob]] = None):
        self._jobs: dict[str, ReferenceJob] = {}
        for job in jobs or []:
            self._jobs[job.id] = job.model_copy(deep=True)

    async def create_document(self, job: ReferenceJob) -> str:
        if job.id in self._jobs:
            raise ValueError(f"Document {job.id} already exists")
        self._jobs[job.id] = job.model_copy(deep=True)
        return job.id

    async def list_documents(self) -> list[ReferenceJob]:
        return [job.model_copy(deep=True) for job in self._jobs.values()]

    async def get_document(self, job_id: str) -> ReferenceJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise DocumentNotFoundError(f"document {job_id} not found")
        return job.model_copy(deep=True)

    async def update_document(self, job: ReferenceJob) -> None:
        if job.id not in self._jobs:
            raise DocumentNotFoundError(f"document {job.id} not found")
        self._jobs[job.id] = job.model_copy(deep=True)
