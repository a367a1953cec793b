"""
Audit Router
Search failure statistics for tuning keyword and provider choices
"""

from fastapi import APIRouter, Query

from ..services.search_audit import get_search_audit

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/search-failures")
async def get_search_failures(recent: int = Query(10, ge=0, le=200)):
    return get_search_audit().stats(recent=recent)


@router.delete("/search-failures")
async def clear_search_failures():
    get_search_audit().clear()
    return {"status": "cleared"}
