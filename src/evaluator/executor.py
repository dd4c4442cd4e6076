"""
Evaluation task executor.

Drives one task from ``processing`` to ``completed`` or ``failed``:
embed CV -> retrieve reference jobs -> build prompt -> generate -> extract.
"""

import asyncio
from typing import Any, Optional

from loguru import logger

from retriever.index import Retriever
from shared.config import Settings, get_settings
from shared.errors import InvalidTransitionError, describe
from shared.models import EvaluationTask, TaskStatus
from shared.stores import TaskStore

from .extractor import extract_evaluation
from .prompts import build_evaluation_prompt
from .runner import TaskRunner


class EvaluationService:
    """Submits evaluations and runs them in the background."""

    def __init__(
        self,
        client,
        retriever: Retriever,
        task_store: TaskStore,
        runner: Optional[TaskRunner] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            client: ``ResilientClient`` (or anything with the same ``embed``/``generate``)
            retriever: Reference job retriever
            task_store: Where tasks are persisted
            runner: Background worker pool; one is created from settings if omitted
        """
        self.settings = settings or get_settings()
        self.client = client
        self.retriever = retriever
        self.task_store = task_store
        self.runner = runner or TaskRunner(self.settings.worker_concurrency)

    async def submit(self, cv: str, report: str) -> str:
        """
        Persist a new task in ``processing`` and schedule its evaluation.

        Returns:
            Task ID, available before the evaluation finishes
        """
        if not (cv or "").strip():
            raise ValueError("cv text cannot be empty")
        if not (report or "").strip():
            raise ValueError("report text cannot be empty")

        task = EvaluationTask(cv=cv, report=report)
        await self.task_store.create_task(task)
        self._log_transition(task, "Evaluation submitted")

        self.runner.submit(task.id, lambda: self.evaluate_task(task))
        return task.id

    async def wait(self, task_id: str) -> EvaluationTask:
        """Wait for a background evaluation, then return the stored task."""
        await self.runner.wait(task_id)
        return await self.task_store.get_task(task_id)

    async def get_result(self, task_id: str) -> dict[str, Any]:
        """Current status and result fields of a task."""
        task = await self.task_store.get_task(task_id)
        return task.to_public_dict()

    async def evaluate_task(self, task: EvaluationTask) -> EvaluationTask:
        """Run the evaluation steps in order. Always ends in a terminal state."""
        if task.status != TaskStatus.PROCESSING:
            logger.warning(f"Task {task.id} is already {task.status.value}, not evaluating")
            return task

        try:
            return await self._run_steps(task)
        except asyncio.CancelledError:
            await self._record_cancellation(task)
            raise

    async def _run_steps(self, task: EvaluationTask) -> EvaluationTask:
        # 1. CV embedding
        try:
            cv_embedding = await self.client.embed(task.cv)
        except Exception as e:
            return await self._fail(task, "embedding", e)

        # 2. Reference jobs closest to the CV
        try:
            jobs = await self.retriever.search(cv_embedding, self.settings.retrieval_top_k)
        except Exception as e:
            return await self._fail(task, "retrieval", e)
        logger.info(
            f"Task {task.id}: retrieved {len(jobs)} reference jobs: "
            + ", ".join(f"{scored.job.title} ({scored.distance:.3f})" for scored in jobs)
        )

        # 3. Prompt
        prompt = build_evaluation_prompt(jobs, task.cv, task.report)

        # 4. Generation
        try:
            text = await self.client.generate(self.settings.generation_model, prompt)
        except Exception as e:
            return await self._fail(task, "generation", e)

        # 5. Extraction
        result = extract_evaluation(text).clamped()
        if result.is_empty:
            logger.bind(event="empty_evaluation", task_id=task.id).warning(
                f"Task {task.id}: no evaluation fields found in model output ({len(text)} chars)"
            )

        task.complete(result)
        await self.task_store.update_task(task)
        self._log_transition(
            task,
            f"Evaluation completed: cv_match_rate={task.cv_match_rate:.2f}, "
            f"project_score={task.project_score:.2f}",
        )
        return task

    async def _record_cancellation(self, task: EvaluationTask) -> None:
        """Persist a cancelled evaluation as failed, unless its final state is already stored."""
        logger.warning(f"Task {task.id}: evaluation cancelled")
        if not task.status.is_terminal:
            task.fail()
        try:
            await asyncio.shield(self.task_store.update_task(task))
        except InvalidTransitionError:
            logger.debug(f"Task {task.id}: final state was already stored")
            return
        self._log_transition(task, "Evaluation cancelled")

    async def _fail(self, task: EvaluationTask, step: str, error: Exception) -> EvaluationTask:
        detail = describe(error, self.settings.is_production)
        if self.settings.is_production:
            logger.error(f"Task {task.id}: {step} failed: {detail}")
        else:
            logger.opt(exception=error).error(f"Task {task.id}: {step} failed: {detail}")

        task.fail()
        await self.task_store.update_task(task)
        self._log_transition(task, f"Evaluation failed at {step}")
        return task

    @staticmethod
    def _log_transition(task: EvaluationTask, message: str) -> None:
        logger.bind(event="task_transition", task_id=task.id, status=task.status.value).info(
            f"Task {task.id}: {message}"
        )
