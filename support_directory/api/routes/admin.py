import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from support_directory.core.security import require_admin
from support_directory.schemas.admin import ReconcileTriggerOut
from support_directory.services.engine import get_engine
from support_directory.services.orchestrator import ReconciliationInProgressError

router = APIRouter()
logger = logging.getLogger(__name__)

IN_PROGRESS_MESSAGE = "Reconciliation already in progress"


@router.post("/reconcile", response_model=ReconcileTriggerOut, dependencies=[Depends(require_admin)])
async def trigger_reconciliation(
    engine=Depends(get_engine),
    force: bool = Query(default=False),
    wait: bool = Query(default=False),
) -> ReconcileTriggerOut:
    if not wait:
        if not engine.runner.trigger(force=force):
            return ReconcileTriggerOut(message=IN_PROGRESS_MESSAGE)
        return ReconcileTriggerOut(message="Reconciliation started")

    try:
        report = await engine.runner.run(force=force)
    except ReconciliationInProgressError:
        return ReconcileTriggerOut(message=IN_PROGRESS_MESSAGE)
    except Exception as exc:
        logger.exception("reconciliation failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    if not report.executed:
        return ReconcileTriggerOut(message="Reconciliation not due")
    return ReconcileTriggerOut(message="Reconciliation completed")
