"""
CV Evaluator - Main entry point.

Usage:
    # Seed and index the reference job corpus
    cv-evaluator index-jobs

    # Evaluate a CV and project report (plain text) and wait for the result
    cv-evaluator evaluate --cv cv.txt --report report.txt

    # Look up a stored evaluation
    cv-evaluator result <task-id>
"""

import asyncio
import json
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import click
from loguru import logger

from retriever.index import Retriever
from retriever.seed import index_reference_jobs, load_reference_jobs
from shared.config import Settings, get_settings
from shared.database import Database, MongoDocumentStore, MongoTaskStore
from shared.errors import EvaluatorError, TaskNotFoundError
from shared.models import TaskStatus
from shared.stores import InMemoryDocumentStore, InMemoryTaskStore

from .client import ResilientClient
from .executor import EvaluationService
from .runner import TaskRunner


def setup_logging():
    """Configure loguru logging."""
    settings = get_settings()
    logger.remove()

    if settings.log_format == "json":
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
                "<level>{message}</level>"
            ),
            level=settings.log_level,
        )


@asynccontextmanager
async def open_stores(settings: Settings, memory: bool):
    """Yield (task_store, document_store), backed by MongoDB unless ``memory``."""
    if memory:
        yield InMemoryTaskStore(), InMemoryDocumentStore()
        return

    db = Database(settings)
    await db.connect()
    try:
        await db.ensure_indexes()
        yield MongoTaskStore(db), MongoDocumentStore(db)
    finally:
        await db.disconnect()


async def seed_jobs(
    seed_path: Optional[Path] = None,
    reindex: bool = False,
) -> tuple[int, int]:
    """
    Store and index the reference job corpus.

    Returns:
        Tuple of (indexed, failed)
    """
    settings = get_settings()
    jobs = load_reference_jobs(seed_path or settings.jobs_seed_path)
    client = ResilientClient(settings)

    async with open_stores(settings, memory=False) as (_, document_store):
        retriever = Retriever(client, document_store, settings.embedding_dimensions)
        result = await index_reference_jobs(retriever, document_store, jobs, reindex=reindex)

    return result.indexed, result.failed


async def run_evaluation(
    cv_path: Path,
    report_path: Path,
    memory: bool = False,
) -> dict:
    """
    Submit one evaluation and wait for it to finish.

    Returns:
        The task's public fields
    """
    settings = get_settings()
    cv = cv_path.read_text(encoding="utf-8")
    report = report_path.read_text(encoding="utf-8")

    client = ResilientClient(settings)
    runner = TaskRunner(settings.worker_concurrency)

    async with open_stores(settings, memory) as (task_store, document_store):
        retriever = Retriever(client, document_store, settings.embedding_dimensions)
        if memory:
            jobs = load_reference_jobs(settings.jobs_seed_path)
            await index_reference_jobs(retriever, document_store, jobs)

        service = EvaluationService(client, retriever, task_store, runner, settings)
        task_id = await service.submit(cv, report)
        logger.info(f"Submitted evaluation {task_id}")

        await service.wait(task_id)
        return await service.get_result(task_id)


async def fetch_result(task_id: str) -> dict:
    settings = get_settings()
    async with open_stores(settings, memory=False) as (task_store, _):
        task = await task_store.get_task(task_id)
        return task.to_public_dict()


@click.group()
def cli():
    """CV Evaluator - Scores a CV and project report against reference jobs using an LLM."""
    setup_logging()


@cli.command("index-jobs")
@click.option(
    "--seed",
    "-s",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file with reference jobs (default from settings)",
)
@click.option(
    "--reindex",
    "-r",
    is_flag=True,
    help="Recompute embeddings for jobs that already have one",
)
def index_jobs(seed: Optional[Path], reindex: bool):
    """Store and index the reference job descriptions."""
    indexed, failed = asyncio.run(seed_jobs(seed_path=seed, reindex=reindex))
    click.echo(f"Indexed: {indexed}, Failed: {failed}")
    if failed:
        sys.exit(1)


@cli.command()
@click.option(
    "--cv",
    "cv_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Plain-text CV",
)
@click.option(
    "--report",
    "report_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Plain-text project report",
)
@click.option(
    "--memory",
    "-m",
    is_flag=True,
    help="Use in-memory stores instead of MongoDB (indexes the seed jobs first)",
)
def evaluate(cv_path: Path, report_path: Path, memory: bool):
    """Evaluate a CV and project report. Exits 1 if the evaluation failed."""
    try:
        result = asyncio.run(run_evaluation(cv_path, report_path, memory=memory))
    except (ValueError, EvaluatorError) as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(result, indent=2))
    if result.get("status") == TaskStatus.FAILED.value:
        sys.exit(1)


@cli.command()
@click.argument("task_id")
def result(task_id: str):
    """Show a stored evaluation."""
    try:
        data = asyncio.run(fetch_result(task_id))
    except TaskNotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(data, indent=2))


@cli.command()
def ping():
    """Check that the generation provider answers."""
    client = ResilientClient(get_settings())
    try:
        text = asyncio.run(client.ping())
    except (ValueError, EvaluatorError) as e:
        raise click.ClickException(str(e))
    click.echo(text)


if __name__ == "__main__":
    cli()
