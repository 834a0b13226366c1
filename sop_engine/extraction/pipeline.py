"""
Ingestion Pipeline

document -> text -> segments -> [LLM] -> candidates -> normalize -> (dedup) ->
append -> tag ingest -> conflict scan -> save

Candidates and segments fail in isolation: a bad one becomes a warning
on the report and the run continues. Documents are serialized through
ProcessingQueue so two uploads never write into collections at once.
"""
import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import config
from sop_engine.errors import DuplicateRuleIdError, MalformedCandidateError
from sop_engine.extraction.core_ai import call_model
from sop_engine.extraction.prompts import build_extraction_prompt
from sop_engine.extraction.segmenter import extract_text, segment_text
from sop_engine.rules import (
    CandidateNormalizer,
    Conflict,
    ConflictDetector,
    Deduplicator,
    NormalizationContext,
    RuleCollection,
    strip_json_fences,
)
from sop_engine.rules.models import now_iso
from sop_engine.tags import IngestionPolicy, TagRegistry
from sop_engine.utils.logger import get_logger

logger = get_logger(__name__)


class IngestMode(str, Enum):
    CREATE = "create"
    UPDATE = "update"


# segment text, 0-based segment index, context -> raw candidate payloads
Extractor = Callable[[str, int, NormalizationContext], Awaitable[List[Any]]]


@dataclass
class IngestionReport:
    sop_id: str
    mode: IngestMode
    file_name: Optional[str] = None
    segments: int = 0
    extracted: int = 0
    added_rule_ids: List[str] = field(default_factory=list)
    skipped_duplicates: int = 0
    warnings: List[str] = field(default_factory=list)
    new_tags: List[Dict] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def added(self) -> int:
        """Newly added rules; the figure reported for an update run."""
        return len(self.added_rule_ids)

    def to_dict(self) -> Dict:
        return {
            "sop_id": self.sop_id,
            "mode": self.mode.value,
            "file_name": self.file_name,
            "segments": self.segments,
            "extracted": self.extracted,
            "added": self.added,
            "added_rule_ids": list(self.added_rule_ids),
            "skipped_duplicates": self.skipped_duplicates,
            "warnings": list(self.warnings),
            "new_tags": list(self.new_tags),
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


# ============================================================
# LLM EXTRACTOR
# ============================================================

class LLMExtractor:
    """Default extractor: one model call per segment, JSON array back."""

    def __init__(self, registry: TagRegistry, call: Callable[[str], Awaitable[str]] = None):
        self.registry = registry
        self.call = call or call_model

    async def __call__(self, segment: str, index: int, context: NormalizationContext) -> List[Any]:
        prompt = build_extraction_prompt(
            segment, index, context.upload_date, context.file_name,
            self.registry.lookup_tables(),
        )
        response = await self.call(prompt)

        try:
            data = json.loads(strip_json_fences(response or ""))
        except json.JSONDecodeError as e:
            raise MalformedCandidateError(f"model response is not valid JSON: {e}", index)

        if isinstance(data, dict):
            for key in ("candidates", "rules"):
                if isinstance(data.get(key), list):
                    return data[key]
            return [data]
        if not isinstance(data, list):
            raise MalformedCandidateError("model response is not a JSON array", index)
        return data


# ============================================================
# PIPELINE
# ============================================================

class IngestionPipeline:

    def __init__(self, registry: TagRegistry, store=None, extractor: Extractor = None,
                 detector: ConflictDetector = None):
        self.registry = registry
        self.store = store
        self.normalizer = CandidateNormalizer(registry)
        self.extractor = extractor or LLMExtractor(registry)
        self.detector = detector or ConflictDetector()

    @staticmethod
    def _context(collection: RuleCollection, file_name: Optional[str],
                 upload_date: Optional[str]) -> NormalizationContext:
        return NormalizationContext(
            sop_id=collection.sop_id,
            client_prefix=collection.client_prefix,
            upload_date=upload_date or date.today().isoformat(),
            file_name=file_name,
        )

    def apply_candidates(
        self,
        collection: RuleCollection,
        payloads: List[Any],
        mode: IngestMode = IngestMode.CREATE,
        trusted: Optional[bool] = None,
        file_name: Optional[str] = None,
        upload_date: Optional[str] = None,
        report: Optional[IngestionReport] = None,
    ) -> IngestionReport:
        """Normalize, filter and append already-extracted candidates."""
        mode = IngestMode(mode)
        trusted = config.TRUSTED_INGESTION if trusted is None else trusted
        policy = IngestionPolicy.AUTO_APPROVE if trusted else IngestionPolicy.REVIEW
        context = self._context(collection, file_name, upload_date)
        report = report or IngestionReport(sop_id=collection.sop_id, mode=mode, file_name=file_name)

        dedup = Deduplicator(collection.rules) if mode == IngestMode.UPDATE else None
        sequence = collection.next_sequence()

        for position, payload in enumerate(payloads):
            report.extracted += 1
            try:
                normalized = self.normalizer.normalize(payload, sequence - 1, context)
                rule = normalized.rule
                if dedup is not None and not dedup.accept(rule):
                    report.skipped_duplicates += 1
                    continue
                collection.add(rule)
            except (MalformedCandidateError, DuplicateRuleIdError) as e:
                message = f"Candidate {position + 1} skipped: {e}"
                report.warnings.append(message)
                logger.warning(f"[{collection.sop_id}] {message}")
                continue

            report.added_rule_ids.append(rule.rule_id)
            sequence += 1

            for discovery in normalized.discoveries:
                entry = self.registry.ingest(discovery, policy)
                report.new_tags.append(entry.to_dict())

        report.conflicts = self.detector.scan(collection)
        if self.store is not None:
            self.store.save_collection(collection)

        logger.info(
            f"[{collection.sop_id}] {mode.value}: {report.extracted} candidate(s), "
            f"{report.added} added, {report.skipped_duplicates} duplicate(s), "
            f"{len(report.warnings)} warning(s)"
        )
        return report

    async def extract_candidates(
        self,
        context: NormalizationContext,
        file_name: str,
        data: bytes,
        report: IngestionReport,
    ) -> List[Any]:
        """Extract and segment a document and run every segment through the extractor."""
        text = extract_text(file_name, data)
        segments = segment_text(text)
        report.segments = len(segments)

        payloads = []
        for index, segment in enumerate(segments):
            try:
                payloads.extend(await self.extractor(segment, index, context))
            except MalformedCandidateError as e:
                report.warnings.append(f"Segment {index + 1} skipped: {e}")
                logger.warning(f"[{report.sop_id}] segment {index + 1}: {e}")
            except Exception as e:
                # Extractor failures (network, quota, provider errors) only cost this segment
                report.warnings.append(f"Segment {index + 1} failed: {e}")
                logger.error(f"[{report.sop_id}] extraction failed on segment {index + 1}: {e}")
        return payloads

    async def ingest_document(
        self,
        collection: RuleCollection,
        file_name: str,
        data: bytes,
        mode: IngestMode = IngestMode.CREATE,
        trusted: Optional[bool] = None,
        upload_date: Optional[str] = None,
    ) -> IngestionReport:
        """Ingest a document into an in-memory collection."""
        mode = IngestMode(mode)
        context = self._context(collection, file_name, upload_date)
        report = IngestionReport(sop_id=collection.sop_id, mode=mode, file_name=file_name)
        payloads = await self.extract_candidates(context, file_name, data, report)
        return self.apply_candidates(
            collection, payloads, mode=mode, trusted=trusted,
            file_name=file_name, upload_date=context.upload_date, report=report,
        )

    async def ingest_stored(
        self,
        sop_id: str,
        file_name: str,
        data: bytes,
        lock: asyncio.Lock,
        mode: IngestMode = IngestMode.CREATE,
        trusted: Optional[bool] = None,
        upload_date: Optional[str] = None,
    ) -> IngestionReport:
        """
        Ingest a document into a stored collection.

        The model calls run without the collection's write lock. The
        collection is loaded fresh under the lock and saved before it is
        released, so rule edits made during extraction are kept.
        """
        mode = IngestMode(mode)
        snapshot = self.store.load_collection(sop_id)
        context = self._context(snapshot, file_name, upload_date)
        report = IngestionReport(sop_id=sop_id, mode=mode, file_name=file_name)
        payloads = await self.extract_candidates(context, file_name, data, report)

        async with lock:
            collection = self.store.load_collection(sop_id)
            return self.apply_candidates(
                collection, payloads, mode=mode, trusted=trusted,
                file_name=file_name, upload_date=context.upload_date, report=report,
            )


# ============================================================
# PROCESSING QUEUE
# ============================================================

class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class QueueJob:
    job_id: str
    sop_id: str
    file_name: str
    status: JobStatus = JobStatus.QUEUED
    error: Optional[str] = None
    report: Optional[IngestionReport] = None
    created_at: str = field(default_factory=now_iso)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "job_id": self.job_id,
            "sop_id": self.sop_id,
            "file_name": self.file_name,
            "status": self.status.value,
            "error": self.error,
            "report": self.report.to_dict() if self.report else None,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class ProcessingQueue:
    """
    Process-wide FIFO: one document at a time, across all SOPs.

    Also owns one write lock per SOP. Every writer of a stored collection
    (document ingestion and rule or conflict edits) holds it from load to save.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._write_locks: Dict[str, asyncio.Lock] = {}
        self.jobs: List[QueueJob] = []

    def write_lock(self, sop_id: str) -> asyncio.Lock:
        if sop_id not in self._write_locks:
            self._write_locks[sop_id] = asyncio.Lock()
        return self._write_locks[sop_id]

    async def submit(self, sop_id: str, file_name: str,
                     work: Callable[[], Awaitable[IngestionReport]]) -> QueueJob:
        job = QueueJob(job_id=uuid.uuid4().hex, sop_id=sop_id, file_name=file_name)
        self.jobs.append(job)

        async with self._lock:
            job.status = JobStatus.PROCESSING
            job.started_at = now_iso()
            try:
                job.report = await work()
                job.status = JobStatus.COMPLETED
            except Exception as e:
                job.status = JobStatus.FAILED
                job.error = str(e)
                logger.error(f"Job {job.job_id} ({file_name}) failed: {e}")
                raise
            finally:
                job.finished_at = now_iso()
        return job

    def get(self, job_id: str) -> Optional[QueueJob]:
        for job in self.jobs:
            if job.job_id == job_id:
                return job
        return None

    def list(self, sop_id: Optional[str] = None) -> List[QueueJob]:
        if sop_id is None:
            return list(self.jobs)
        return [j for j in self.jobs if j.sop_id == sop_id]
