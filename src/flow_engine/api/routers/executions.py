"""
Workflow execution API routes
"""
from fastapi import APIRouter, Depends, Query, status
from typing import Optional, Dict, Any
import logging

from ..models import ResumeRequest, PaginatedResponse, ExecutionStatusEnum
from ..dependencies import api_error, get_engine
from ...exceptions import ExecutionNotFoundError, InvalidExecutionStateError
from ...models.execution import ExecutionStatus


logger = logging.getLogger(__name__)
router = APIRouter()


def _not_found(e: ExecutionNotFoundError):
    return api_error(status.HTTP_404_NOT_FOUND, "EXECUTION_NOT_FOUND", str(e))


def _conflict(e: InvalidExecutionStateError):
    return api_error(status.HTTP_409_CONFLICT, "INVALID_EXECUTION_STATE", str(e))


@router.get("/", response_model=PaginatedResponse)
async def list_executions(
    workflow_id: Optional[str] = Query(None, description="Workflow ID"),
    status: Optional[ExecutionStatusEnum] = Query(None, description="Execution status"),
    offset: int = Query(0, ge=0, description="Offset"),
    limit: int = Query(20, ge=1, le=100, description="Page size"),
    engine = Depends(get_engine)
) -> PaginatedResponse:
    """List executions, newest first"""
    page = await engine.store.list(
        workflow_id=workflow_id,
        status=ExecutionStatus(status.value) if status else None,
        offset=offset,
        limit=limit
    )
    return PaginatedResponse(
        total=page.total,
        offset=page.offset,
        limit=page.limit,
        hasMore=page.has_more,
        items=[execution.to_dict() for execution in page.items]
    )


@router.get("/{execution_id}")
async def get_execution(
    execution_id: str,
    engine = Depends(get_engine)
) -> Dict[str, Any]:
    """Execution detail with per-node results"""
    try:
        execution = await engine.get_execution(execution_id)
    except ExecutionNotFoundError as e:
        raise _not_found(e)
    return execution.to_dict()


@router.post("/{execution_id}/cancel", status_code=status.HTTP_202_ACCEPTED)
async def cancel_execution(
    execution_id: str,
    engine = Depends(get_engine)
) -> Dict[str, Any]:
    """Request cancellation of an active execution"""
    try:
        execution = await engine.cancel_execution(execution_id)
    except ExecutionNotFoundError as e:
        raise _not_found(e)
    except InvalidExecutionStateError as e:
        raise _conflict(e)
    return execution.to_dict()


@router.post("/{execution_id}/nodes/{node_id}/resume", status_code=status.HTTP_202_ACCEPTED)
async def resume_execution(
    execution_id: str,
    node_id: str,
    request: Optional[ResumeRequest] = None,
    engine = Depends(get_engine)
) -> Dict[str, Any]:
    """Complete a waiting node"""
    try:
        execution = await engine.resume_execution(execution_id, node_id, request.items if request else None)
    except ExecutionNotFoundError as e:
        raise _not_found(e)
    except InvalidExecutionStateError as e:
        raise _conflict(e)
    return execution.to_dict()
