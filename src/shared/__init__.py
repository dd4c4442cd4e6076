# Shared module for configuration, models, errors and persistence
from .config import Settings, get_settings
from .database import Database, MongoDocumentStore, MongoTaskStore
from .models import EvaluationResult, EvaluationTask, ReferenceJob, ScoredJob, TaskStatus
from .stores import DocumentStore, InMemoryDocumentStore, InMemoryTaskStore, TaskStore

__all__ = [
    "Settings",
    "get_settings",
    "Database",
    "MongoDocumentStore",
    "MongoTaskStore",
    "EvaluationResult",
    "EvaluationTask",
    "ReferenceJob",
    "ScoredJob",
    "TaskStatus",
    "DocumentStore",
    "InMemoryDocumentStore",
    "InMemoryTaskStore",
    "TaskStore",
]
