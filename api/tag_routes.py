"""
Tag Registry API Routes

Vocabulary listing, the pending-review queue and approve/reject
decisions, plus a tokenizer endpoint for inspecting rule descriptions.
"""

from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_registry, to_http
from sop_engine.errors import SOPEngineError
from sop_engine.grammar import Tag, TagGroup, TextRun, Token, extract_tags, tokenize, validate_description
from sop_engine.tags import TagRegistry, TagStatus, TagType

router = APIRouter(prefix="/api/tags", tags=["tags"])
grammar_router = APIRouter(prefix="/api/grammar", tags=["grammar"])


class TokenizeRequest(BaseModel):
    text: str


# ============================================================
# TAGS
# ============================================================

@router.get("")
async def list_tags(type: Optional[TagType] = None, status: Optional[TagStatus] = None,
                    registry: TagRegistry = Depends(get_registry)):
    return {"tags": [e.to_dict() for e in registry.all(type, status)]}


@router.get("/pending")
async def pending_tags(registry: TagRegistry = Depends(get_registry)):
    return {"tags": [e.to_dict() for e in registry.pending()]}


@router.get("/lookup-tables")
async def lookup_tables(registry: TagRegistry = Depends(get_registry)):
    return registry.lookup_tables()


@router.post("/{tag_id}/approve")
async def approve_tag(tag_id: str, registry: TagRegistry = Depends(get_registry)):
    try:
        return registry.approve(tag_id).to_dict()
    except SOPEngineError as e:
        raise to_http(e)


@router.post("/{tag_id}/reject")
async def reject_tag(tag_id: str, registry: TagRegistry = Depends(get_registry)):
    try:
        return registry.reject(tag_id).to_dict()
    except SOPEngineError as e:
        raise to_http(e)


# ============================================================
# GRAMMAR
# ============================================================

def _tag_dict(tag: Tag, registry: TagRegistry) -> Dict:
    return {
        "kind": "tag",
        "raw": tag.raw,
        "name": tag.name,
        "param": tag.param,
        "category": registry.category_of(tag.bare),
        "nested": [t.raw for t in tag.nested],
    }


def _token_dict(token: Token, registry: TagRegistry) -> Dict:
    if isinstance(token, TextRun):
        return {"kind": "text", "text": token.text}
    if isinstance(token, TagGroup):
        return {
            "kind": "group",
            "raw": token.raw,
            "tags": [_tag_dict(t, registry) for t in token.tags],
            "remap": _tag_dict(token.remap, registry) if token.remap else None,
        }
    return _tag_dict(token, registry)


@grammar_router.post("/tokenize")
async def tokenize_text(request: TokenizeRequest, registry: TagRegistry = Depends(get_registry)):
    return {
        "tokens": [_token_dict(t, registry) for t in tokenize(request.text)],
        "tags": extract_tags(request.text),
        "problems": validate_description(request.text),
    }
