"""
Evaluator Service - LLM-based CV and project report evaluation.

Embeds the CV, retrieves the closest reference jobs, asks the LLM for a
structured evaluation and stores the extracted result on the task.
"""

from .breaker import CircuitBreaker
from .client import ResilientClient, is_retryable
from .executor import EvaluationService
from .extractor import extract_evaluation
from .runner import TaskRunner

__all__ = [
    "CircuitBreaker",
    "ResilientClient",
    "is_retryable",
    "EvaluationService",
    "extract_evaluation",
    "TaskRunner",
]
