"""
SOP API Routes

SOP collections, document ingestion, rule lifecycle and conflict
resolution. Every mutating endpoint holds the SOP's write lock from
load to save and goes through SOPService, which rescans conflicts and
saves the collection.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

import config
from api.dependencies import get_extractor, get_queue, get_registry, get_store, to_http
from sop_engine.db.queries import SOPStore
from sop_engine.errors import SOPEngineError
from sop_engine.extraction import IngestionPipeline, IngestMode, ProcessingQueue
from sop_engine.rules import (
    ConflictResolution,
    Rule,
    SOPService,
    generate_category,
    make_rule_id,
    rule_problems,
)
from sop_engine.tags import TagRegistry

router = APIRouter(prefix="/api/sops", tags=["sops"])


# ============================================================
# MODELS
# ============================================================

class CreateSOPRequest(BaseModel):
    name: str
    client_prefix: Optional[str] = None


class RuleRequest(BaseModel):
    rule_id: Optional[str] = None
    code: str
    code_group: Optional[str] = None
    codes_selected: Optional[List[str]] = None
    action: str
    payer_group: str = "@ALL"
    provider_group: str = "@ALL_PROVIDERS"
    description: str
    documentation_trigger: str = ""
    chart_section: str = ""
    modifiers: Optional[List[str]] = None
    effective_date: Optional[str] = None
    end_date: Optional[str] = None
    reference: Optional[str] = None


class EditRuleRequest(BaseModel):
    changes: Dict[str, Any]


class RejectRuleRequest(BaseModel):
    reason: Optional[str] = None


class ResolveConflictRequest(BaseModel):
    conflict_id: str
    action: str
    merged_rule: Optional[Dict[str, Any]] = None


# ============================================================
# HELPERS
# ============================================================

def _service(sop_id: str, store: SOPStore, registry: TagRegistry) -> SOPService:
    try:
        collection = store.load_collection(sop_id)
    except SOPEngineError as e:
        raise to_http(e)
    service = SOPService(collection, registry, store)
    # Conflicts are derived state; recompute them for the loaded rules
    service.detector.scan(collection)
    return service


def _rules_payload(service: SOPService) -> Dict:
    return {
        **service.summary(),
        "rules": [r.to_dict() for r in service.collection.rules],
    }


# ============================================================
# SOPS
# ============================================================

@router.post("")
async def create_sop(request: CreateSOPRequest, store: SOPStore = Depends(get_store)):
    prefix = (request.client_prefix or config.DEFAULT_CLIENT_PREFIX).strip().upper()
    collection = store.create_sop(request.name, prefix)
    return {"sop_id": collection.sop_id, "name": collection.name, "client_prefix": prefix}


@router.get("")
async def list_sops(store: SOPStore = Depends(get_store)):
    return {"sops": store.list_sops()}


@router.get("/{sop_id}")
async def get_sop(sop_id: str, store: SOPStore = Depends(get_store),
                  registry: TagRegistry = Depends(get_registry)):
    return _rules_payload(_service(sop_id, store, registry))


@router.delete("/{sop_id}")
async def delete_sop(sop_id: str, store: SOPStore = Depends(get_store),
                     queue: ProcessingQueue = Depends(get_queue)):
    async with queue.write_lock(sop_id):
        try:
            store.delete_sop(sop_id)
        except SOPEngineError as e:
            raise to_http(e)
    return {"deleted": sop_id}


# ============================================================
# DOCUMENTS
# ============================================================

@router.post("/{sop_id}/documents")
async def upload_document(
    sop_id: str,
    file: UploadFile = File(...),
    mode: IngestMode = IngestMode.CREATE,
    trusted: Optional[bool] = None,
    store: SOPStore = Depends(get_store),
    registry: TagRegistry = Depends(get_registry),
    queue: ProcessingQueue = Depends(get_queue),
    extractor=Depends(get_extractor),
):
    data = await file.read()
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    if store.get_sop(sop_id) is None:
        raise HTTPException(status_code=404, detail=f"SOP {sop_id} not found")

    pipeline = IngestionPipeline(registry, store=store, extractor=extractor)

    async def work():
        return await pipeline.ingest_stored(
            sop_id, file.filename, data, queue.write_lock(sop_id), mode=mode, trusted=trusted,
        )

    try:
        job = await queue.submit(sop_id, file.filename, work)
    except SOPEngineError as e:
        raise to_http(e)
    return job.to_dict()


@router.get("/{sop_id}/jobs")
async def list_jobs(sop_id: str, queue: ProcessingQueue = Depends(get_queue)):
    return {"jobs": [j.to_dict() for j in queue.list(sop_id)]}


# ============================================================
# RULES
# ============================================================

@router.post("/{sop_id}/rules")
async def create_rule(sop_id: str, request: RuleRequest, store: SOPStore = Depends(get_store),
                      registry: TagRegistry = Depends(get_registry),
                      queue: ProcessingQueue = Depends(get_queue)):
    async with queue.write_lock(sop_id):
        service = _service(sop_id, store, registry)
        data = request.model_dump(exclude_none=True)
        if not data.get("rule_id"):
            data["rule_id"] = make_rule_id(
                service.collection.client_prefix,
                generate_category(request.description),
                service.collection.next_sequence() - 1,
            )
        data.setdefault("codes_selected", [c.strip() for c in request.code.split(",") if c.strip()])
        try:
            rule = Rule.from_dict(data)
            rule.created_by = "Manual"
            service.add_rule(rule)
        except SOPEngineError as e:
            raise to_http(e)
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid rule: {e}")
    return {"rule": rule.to_dict(), "warnings": rule_problems(rule)}


@router.patch("/{sop_id}/rules/{rule_id}")
async def edit_rule(sop_id: str, rule_id: str, request: EditRuleRequest,
                    store: SOPStore = Depends(get_store), registry: TagRegistry = Depends(get_registry),
                    queue: ProcessingQueue = Depends(get_queue)):
    async with queue.write_lock(sop_id):
        service = _service(sop_id, store, registry)
        try:
            rule = service.edit_rule(rule_id, request.changes)
        except SOPEngineError as e:
            raise to_http(e)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return {"rule": rule.to_dict()}


@router.post("/{sop_id}/rules/{rule_id}/approve")
async def approve_rule(sop_id: str, rule_id: str, store: SOPStore = Depends(get_store),
                       registry: TagRegistry = Depends(get_registry),
                       queue: ProcessingQueue = Depends(get_queue)):
    async with queue.write_lock(sop_id):
        service = _service(sop_id, store, registry)
        try:
            rule = service.approve_rule(rule_id)
        except SOPEngineError as e:
            raise to_http(e)
    return {"rule": rule.to_dict()}


@router.post("/{sop_id}/rules/{rule_id}/reject")
async def reject_rule(sop_id: str, rule_id: str, request: Optional[RejectRuleRequest] = None,
                      store: SOPStore = Depends(get_store), registry: TagRegistry = Depends(get_registry),
                      queue: ProcessingQueue = Depends(get_queue)):
    async with queue.write_lock(sop_id):
        service = _service(sop_id, store, registry)
        try:
            rule = service.reject_rule(rule_id, request.reason if request else None)
        except SOPEngineError as e:
            raise to_http(e)
    return {"rule": rule.to_dict()}


@router.post("/{sop_id}/rules/{rule_id}/restore")
async def restore_rule(sop_id: str, rule_id: str, store: SOPStore = Depends(get_store),
                       registry: TagRegistry = Depends(get_registry),
                       queue: ProcessingQueue = Depends(get_queue)):
    async with queue.write_lock(sop_id):
        service = _service(sop_id, store, registry)
        try:
            rule = service.restore_rule(rule_id)
        except SOPEngineError as e:
            raise to_http(e)
    return {"rule": rule.to_dict()}


@router.delete("/{sop_id}/rules/rejected")
async def delete_rejected_rules(sop_id: str, store: SOPStore = Depends(get_store),
                                registry: TagRegistry = Depends(get_registry),
                                queue: ProcessingQueue = Depends(get_queue)):
    async with queue.write_lock(sop_id):
        service = _service(sop_id, store, registry)
        removed = service.delete_rejected()
    return {"deleted": removed, "count": len(removed)}


# ============================================================
# CONFLICTS
# ============================================================

@router.get("/{sop_id}/conflicts")
async def list_conflicts(sop_id: str, store: SOPStore = Depends(get_store),
                         registry: TagRegistry = Depends(get_registry)):
    service = _service(sop_id, store, registry)
    conflicts = service.collection.all_conflicts()
    return {
        "conflicts": [c.to_dict() for c in conflicts],
        "resolved": store.resolved_conflicts(sop_id),
    }


@router.post("/{sop_id}/conflicts/resolve")
async def resolve_conflict(sop_id: str, request: ResolveConflictRequest,
                           store: SOPStore = Depends(get_store),
                           registry: TagRegistry = Depends(get_registry),
                           queue: ProcessingQueue = Depends(get_queue)):
    async with queue.write_lock(sop_id):
        service = _service(sop_id, store, registry)
        try:
            resolution = ConflictResolution(
                conflict_id=request.conflict_id,
                action=request.action,
                merged_rule=request.merged_rule,
            )
            outcome = service.resolve_conflict(resolution)
        except SOPEngineError as e:
            raise to_http(e)
        except (TypeError, KeyError, ValueError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid merged rule: {e}")
    return outcome.to_dict()
