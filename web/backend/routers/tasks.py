from datetime import date, datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from core.completion_ledger import CompletionLedger
from core.exceptions import ConflictError, NotFoundError, TaskflowError, ValidationError
from core.lifecycle import LifecycleScanner
from core.logger import get_logger
from core.paths import COMPLETION_LEDGER_PATH, WORK_ITEMS_PATH
from core.ranking_presenter import RankingPresenter
from core.rescue import RescueWorkflow
from core.store import WorkItemRegistry, WorkItemStore, item_to_dict
from scheduler.daily_tick import MidnightScheduler

router = APIRouter()
logger = get_logger("api.tasks")

_store: Optional[WorkItemStore] = None
_ledger: Optional[CompletionLedger] = None
_scheduler: Optional[MidnightScheduler] = None


class CompletionRequest(BaseModel):
    user_id: str
    completed: bool = True
    day: Optional[date] = None


class RescueRequest(BaseModel):
    proposed_resolution: str
    new_deadline: str
    root_cause_category: str
    root_cause_factor: Optional[str] = None
    severity: str = "medium"
    user_id: Optional[str] = None


def get_store() -> WorkItemStore:
    global _store
    if _store is None:
        _store = WorkItemRegistry(path=WORK_ITEMS_PATH)
    return _store


def get_ledger() -> CompletionLedger:
    global _ledger
    if _ledger is None:
        _ledger = CompletionLedger(path=COMPLETION_LEDGER_PATH)
    return _ledger


def get_scheduler() -> MidnightScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = MidnightScheduler(LifecycleScanner(get_store()))
    return _scheduler


def _http_error(exc: TaskflowError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=exc.to_dict())
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=exc.to_dict())
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=exc.to_dict())
    logger.error("Unhandled domain error: %s", exc.message)
    return HTTPException(status_code=500, detail=exc.to_dict())


@router.get("/ranking")
def get_ranking(user_id: str) -> Dict[str, Any]:
    presenter = RankingPresenter(get_store(), get_ledger())
    return presenter.present(user_id).to_dict()


@router.post("/{item_id}/completion")
def toggle_completion(item_id: str, req: CompletionRequest) -> Dict[str, Any]:
    try:
        get_store().get_item(item_id)
        mark = get_ledger().toggle(
            user_id=req.user_id,
            item_id=item_id,
            day=req.day or datetime.now().date(),
            completed=req.completed,
        )
    except TaskflowError as exc:
        raise _http_error(exc)
    return {"mark": mark.to_dict()}


@router.post("/lifecycle/scan")
def trigger_scan() -> Dict[str, Any]:
    summary = get_scheduler().trigger_now()
    return summary.to_dict()


@router.get("/lifecycle/status")
def scheduler_status() -> Dict[str, Any]:
    return get_scheduler().status()


@router.post("/{item_id}/rescue")
def rescue_item(item_id: str, req: RescueRequest) -> Dict[str, Any]:
    workflow = RescueWorkflow(get_store())
    try:
        rescued = workflow.rescue(
            item_id,
            proposed_resolution=req.proposed_resolution,
            new_deadline=req.new_deadline,
            root_cause_category=req.root_cause_category,
            root_cause_factor=req.root_cause_factor,
            severity=req.severity,
            user_id=req.user_id,
        )
        original = get_store().get_item(item_id)
    except TaskflowError as exc:
        raise _http_error(exc)
    return {"roadblock": item_to_dict(original), "rescue_item": item_to_dict(rescued)}


@router.get("/rescue/orphans")
def list_orphaned_rescues() -> Dict[str, Any]:
    orphans = RescueWorkflow(get_store()).find_orphaned_rescues()
    return {
        "count": len(orphans),
        "orphans": [
            {"rescue_item_id": rescued.id, "item_id": original.id}
            for rescued, original in orphans
        ],
    }


@router.post("/rescue/reconcile")
def reconcile_rescues() -> Dict[str, Any]:
    reconciled = RescueWorkflow(get_store()).reconcile_orphans()
    return {"reconciled_count": len(reconciled), "item_ids": reconciled}
