"""
MongoDB database connection and stores using Motor (async driver).
"""

from datetime import datetime, timezone
from typing import Optional

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError

from .config import Settings, get_settings
from .errors import DocumentNotFoundError, InvalidTransitionError, TaskNotFoundError
from .models import EvaluationTask, ReferenceJob, TaskStatus


class Database:
    """Async MongoDB database wrapper."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[AsyncIOMotorClient] = None
        self._db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self) -> None:
        """Establish database connection."""
        if self._client is not None:
            return

        logger.info(f"Connecting to MongoDB: {self.settings.mongodb_database}")
        self._client = AsyncIOMotorClient(self.settings.mongodb_uri, tz_aware=True)
        self._db = self._client[self.settings.mongodb_database]

        # Verify connection
        await self._client.admin.command("ping")
        logger.info("MongoDB connection established")

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("MongoDB connection closed")

    @property
    def db(self) -> AsyncIOMotorDatabase:
        """Get database instance."""
        if self._db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._db

    async def ensure_indexes(self) -> None:
        """Create database indexes."""
        task_indexes = [
            IndexModel([("status", ASCENDING)]),
            IndexModel([("created_at", DESCENDING)]),
        ]
        await self.db.evaluation_tasks.create_indexes(task_indexes)

        job_indexes = [
            IndexModel([("title", ASCENDING)]),
            IndexModel([("created_at", ASCENDING)]),
        ]
        await self.db.jobs.create_indexes(job_indexes)

        logger.info("Database indexes created")


class MongoTaskStore:
    """Evaluation tasks in the ``evaluation_tasks`` collection."""

    def __init__(self, database: Database):
        self.database = database

    @property
    def collection(self):
        return self.database.db.evaluation_tasks

    async def create_task(self, task: EvaluationTask) -> str:
        """Insert a new task, returns task_id."""
        try:
            await self.collection.insert_one(task.to_document())
        except DuplicateKeyError as e:
            raise ValueError(f"Task {task.id} already exists") from e
        return task.id

    async def update_task(self, task: EvaluationTask) -> None:
        """
        Write back a task. Only a task still processing in the store
        can be overwritten, so terminal states are never left.
        """
        document = task.to_document()
        task_id = document.pop("_id")
        document["updated_at"] = datetime.now(timezone.utc)

        result = await self.collection.update_one(
            {"_id": task_id, "status": TaskStatus.PROCESSING.value},
            {"$set": document},
        )
        if result.matched_count:
            return

        existing = await self.collection.find_one({"_id": task_id}, {"status": 1})
        if existing is None:
            raise TaskNotFoundError(f"task {task_id} not found")
        raise InvalidTransitionError(f"task {task_id} is already {existing['status']}")

    async def get_task(self, task_id: str) -> EvaluationTask:
        """Get task by ID."""
        document = await self.collection.find_one({"_id": task_id})
        if document is None:
            raise TaskNotFoundError(f"task {task_id} not found")
        return EvaluationTask.from_document(document)


class MongoDocumentStore:
    """Reference jobs in the ``jobs`` collection."""

    def __init__(self, database: Database):
        self.database = database

    @property
    def collection(self):
        return self.database.db.jobs

    async def create_document(self, job: ReferenceJob) -> str:
        await self.collection.insert_one(job.to_document())
        return job.id

    async def list_documents(self) -> list[ReferenceJob]:
        """All jobs in insertion order."""
        cursor = self.collection.find({}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        return [ReferenceJob.from_document(doc) async for doc in cursor]

    async def get_document(self, job_id: str) -> ReferenceJob:
        document = await self.collection.find_one({"_id": job_id})
        if document is None:
            raise DocumentNotFoundError(f"document {job_id} not found")
        return ReferenceJob.from_document(document)

    async def update_document(self, job: ReferenceJob) -> None:
        document = job.to_document()
        job_id = document.pop("_id")
        document["updated_at"] = datetime.now(timezone.utc)

        result = await self.collection.update_one({"_id": job_id}, {"$set": document})
        if not result.matched_count:
            raise DocumentNotFoundError(f"document {job_id} not found")

