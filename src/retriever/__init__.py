"""
Retriever - reference job indexing and nearest-neighbour search.
"""

from .index import Retriever
from .seed import SeedResult, index_reference_jobs, load_reference_jobs

__all__ = ["Retriever", "SeedResult", "index_reference_jobs", "load_reference_jobs"]
