import threading
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session
from fastapi import FastAPI, Body, Depends, HTTPException, Query, Request

from atas.analytics.engine import (
    AgreementDetail, AgreementSummary, ItemSearchResult, get_agreement, list_by_validity, search_items,
)
from atas.analytics.validity import ValidityTier
from atas.db.session import SessionLocal
from atas.etl.client import ComprasClient
from atas.etl.coordinator import ParallelOptions, SyncCoordinator, SyncResult, SyncStatus
from atas.etl.enrich_descriptions import backfill_primary_descriptions

app = FastAPI(
    title="Atas de Registro de Preço API",
    description="Synchronization and validity tracking of price-registration agreements (compras.gov.br).",
    version="1.0.0"
)

_coordinator_lock = threading.Lock()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_coordinator(request: Request) -> SyncCoordinator:
    # one coordinator per process, it owns the run lock
    with _coordinator_lock:
        coordinator = getattr(request.app.state, 'coordinator', None)
        if coordinator is None:
            coordinator = SyncCoordinator(ComprasClient(), SessionLocal)
            request.app.state.coordinator = coordinator
    return coordinator


class MessageResponse(BaseModel):
    message: str


class ResetResponse(BaseModel):
    message: str
    deleted: dict


# The sync endpoints are plain defs: FastAPI runs them in its threadpool,
# so /sync/status keeps answering while a run is in progress.

@app.post("/sync", response_model=SyncResult)
def sync_full(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return coordinator.run_full()


@app.post("/sync/parallel", response_model=SyncResult)
def sync_parallel(options: Optional[ParallelOptions] = Body(default=None),
                  coordinator: SyncCoordinator = Depends(get_coordinator)):
    return coordinator.run_parallel(options)


@app.post("/sync/resume", response_model=SyncResult)
def sync_resume(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return coordinator.resume()


@app.post("/sync/incremental", response_model=SyncResult)
def sync_incremental(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return coordinator.run_incremental()


@app.post("/sync/stop", response_model=MessageResponse)
def sync_stop(coordinator: SyncCoordinator = Depends(get_coordinator)):
    if not coordinator.stop():
        raise HTTPException(status_code=400, detail="No synchronization in progress to stop.")
    return MessageResponse(message="Stop requested. The synchronization will halt shortly.")


@app.get("/sync/status", response_model=SyncStatus)
def sync_status(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return coordinator.status()


@app.delete("/sync/reset", response_model=ResetResponse)
def sync_reset(coordinator: SyncCoordinator = Depends(get_coordinator)):
    deleted = coordinator.reset_data()
    if deleted is None:
        raise HTTPException(status_code=409, detail="Synchronization in progress, try again later.")
    return ResetResponse(message="Data cleared", deleted=deleted)


@app.post("/sync/fix-descriptions", response_model=MessageResponse)
def fix_descriptions(db: Session = Depends(get_db)):
    fixed = backfill_primary_descriptions(db)
    return MessageResponse(message=f"{fixed} items fixed")


@app.get("/atas/expiring", response_model=List[AgreementSummary])
def atas_expiring(tier: Optional[ValidityTier] = None, limit: int = Query(default=100, ge=1, le=1000),
                  db: Session = Depends(get_db)):
    return list_by_validity(db, tier=tier, limit=limit)


@app.get("/atas/{ata_id}", response_model=AgreementDetail)
def ata_detail(ata_id: int, db: Session = Depends(get_db)):
    detail = get_agreement(db, ata_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Ata not found")
    return detail


@app.get("/items/search", response_model=List[ItemSearchResult])
def items_search(q: str, only_active: bool = False, limit: int = Query(default=50, ge=1, le=500),
                 db: Session = Depends(get_db)):
    try:
        return search_items(db, q, only_active=only_active, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Atas sync API is running."}
