"""
FastAPI dependency injection
"""
from fastapi import HTTPException, Request, status
from typing import Dict, Any, Optional
import logging

from ..core.engine import ExecutionEngine
from ..core.triggers import TriggerService
from ..storage.repository import WorkflowRepository
from ..models.execution import utcnow


logger = logging.getLogger(__name__)


def api_error(
    status_code: int,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """HTTPException carrying the standard error body"""
    body: Dict[str, Any] = {
        "success": False,
        "status": status_code,
        "code": code,
        "message": message,
        "timestamp": utcnow().isoformat(),
    }
    if details:
        body["details"] = details
    return HTTPException(status_code=status_code, detail=body)


def _component(request: Request, name: str, label: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise api_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "SERVICE_UNAVAILABLE",
            f"{label} not initialized"
        )
    return component


def get_engine(request: Request) -> ExecutionEngine:
    """Execution engine of the running application"""
    return _component(request, "engine", "Execution engine")


def get_trigger_service(request: Request) -> TriggerService:
    return _component(request, "triggers", "Trigger service")


def get_workflow_repository(request: Request) -> WorkflowRepository:
    return _component(request, "workflows", "Workflow repository")
