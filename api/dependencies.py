"""
Shared FastAPI dependencies and error mapping.
"""
from typing import Optional

from fastapi import Depends, HTTPException

import config
from sop_engine.db.queries import SOPStore
from sop_engine.errors import (
    ConflictNotFoundError,
    DuplicateRuleIdError,
    ExtractionError,
    InvalidActionError,
    InvalidTransitionError,
    RuleNotFoundError,
    SOPEngineError,
    SOPNotFoundError,
    TagNotFoundError,
)
from sop_engine.extraction import ProcessingQueue
from sop_engine.extraction.pipeline import Extractor
from sop_engine.tags import TagRegistry

_store: Optional[SOPStore] = None
_registry: Optional[TagRegistry] = None
_queue: Optional[ProcessingQueue] = None


def get_store() -> SOPStore:
    global _store
    if _store is None:
        _store = SOPStore(config.DATABASE_PATH)
        _store.init_schema()
    return _store


def get_registry(store: SOPStore = Depends(get_store)) -> TagRegistry:
    global _registry
    if _registry is None:
        _registry = TagRegistry.from_store(store)
    return _registry


def get_queue() -> ProcessingQueue:
    global _queue
    if _queue is None:
        _queue = ProcessingQueue()
    return _queue


def get_extractor() -> Optional[Extractor]:
    """None selects the LLM extractor."""
    return None


_STATUS_CODES = [
    ((SOPNotFoundError, RuleNotFoundError, TagNotFoundError, ConflictNotFoundError), 404),
    ((DuplicateRuleIdError,), 409),
    ((InvalidActionError, InvalidTransitionError, ExtractionError), 400),
]


def to_http(error: SOPEngineError) -> HTTPException:
    for types, status_code in _STATUS_CODES:
        if isinstance(error, types):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
