from __future__ import annotations

from fastapi import APIRouter, Depends

from ...job_store import JobStore
from ...models import HistoryEntry
from ..deps import store_dep

router = APIRouter(prefix="/api/history", tags=["history"])


@router.get("")
def list_history(store: JobStore = Depends(store_dep)) -> dict:
    return {"history": [entry.model_dump(mode="json") for entry in store.load_history()]}


@router.post("")
def upsert_history(entry: HistoryEntry, store: JobStore = Depends(store_dep)) -> dict:
    """Record or update a run; remote runs are matched on ``runRef``, local ones on ``id``."""
    updated = store.find_history(entry.dedup_key) is not None
    store.upsert_history(entry)
    return {"success": True, "updated": updated}
