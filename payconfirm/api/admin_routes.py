from fastapi import APIRouter, Depends, Request

from payconfirm.api.auth import require_admin
import payconfirm.observability.metrics as metrics

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/metrics")
async def get_metrics(request: Request, _=Depends(require_admin)):
    """Probe/outcome counters plus the number of confirmations currently open."""
    snap = await metrics.get_metrics_snapshot()
    snap["active_confirmations"] = request.app.state.controller.active_count
    return snap
