"""
Workflow management API routes
"""
from fastapi import APIRouter, Body, Depends, Query, status
from typing import Dict, Any, Optional
import asyncio
import logging

from ..models import WorkflowUpdateRequest, ExecuteRequest, PaginatedResponse, SuccessResponse
from ..dependencies import api_error, get_engine, get_workflow_repository
from ...core.parser import WorkflowParser
from ...exceptions import (
    WorkflowValidationError, CycleDetectedError, UnknownNodeTypeError,
    UnknownWorkflowError, EngineOverloadedError, InvalidExecutionStateError
)


logger = logging.getLogger(__name__)
router = APIRouter()


def validation_failed(e: Exception):
    details: Dict[str, Any] = {}
    if isinstance(e, WorkflowValidationError) and e.details:
        details["errors"] = e.details
    if isinstance(e, CycleDetectedError):
        details["path"] = e.path
    if isinstance(e, UnknownNodeTypeError):
        details["nodeType"] = e.node_type
    return api_error(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", str(e), details or None)


async def _get_record(workflows, workflow_id: str):
    record = await workflows.get(workflow_id)
    if record is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "WORKFLOW_NOT_FOUND", f"Workflow {workflow_id} not found")
    return record


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_workflow(
    body: Dict[str, Any] = Body(...),
    engine = Depends(get_engine),
    workflows = Depends(get_workflow_repository)
) -> Dict[str, Any]:
    """Validate and store a workflow definition"""
    try:
        definition = WorkflowParser().load(body)
        engine.validate(definition)
    except (WorkflowValidationError, UnknownNodeTypeError) as e:
        logger.info(f"Rejected workflow definition: {e}")
        raise validation_failed(e)

    source = body["workflow"] if isinstance(body.get("workflow"), dict) else body
    enabled = source.get("enabled")
    record = await workflows.save(definition, enabled=None if enabled is None else bool(enabled))
    engine.plan_cache.invalidate(definition.id)
    logger.info(f"Stored workflow {definition.id} (version {definition.version}, {len(definition.nodes)} nodes)")
    return record.to_dict()


@router.get("/", response_model=PaginatedResponse)
async def list_workflows(
    offset: int = Query(0, ge=0, description="Offset"),
    limit: int = Query(20, ge=1, le=100, description="Page size"),
    workflows = Depends(get_workflow_repository)
) -> PaginatedResponse:
    """List stored workflows"""
    page = await workflows.list(offset=offset, limit=limit)
    return PaginatedResponse(
        total=page.total,
        offset=page.offset,
        limit=page.limit,
        hasMore=page.has_more,
        items=[record.to_dict() for record in page.items]
    )


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: str,
    workflows = Depends(get_workflow_repository)
) -> Dict[str, Any]:
    """Workflow detail"""
    record = await _get_record(workflows, workflow_id)
    return record.to_dict()


@router.patch("/{workflow_id}")
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdateRequest,
    workflows = Depends(get_workflow_repository)
) -> Dict[str, Any]:
    """Enable or disable a workflow's triggers"""
    try:
        record = await workflows.set_enabled(workflow_id, request.enabled)
    except UnknownWorkflowError as e:
        raise api_error(status.HTTP_404_NOT_FOUND, "WORKFLOW_NOT_FOUND", str(e))
    logger.info(f"Workflow {workflow_id} {'enabled' if record.enabled else 'disabled'}")
    return record.to_dict()


@router.delete("/{workflow_id}", response_model=SuccessResponse)
async def delete_workflow(
    workflow_id: str,
    engine = Depends(get_engine),
    workflows = Depends(get_workflow_repository)
) -> SuccessResponse:
    """Delete a workflow definition; past executions are kept"""
    if not await workflows.delete(workflow_id):
        raise api_error(status.HTTP_404_NOT_FOUND, "WORKFLOW_NOT_FOUND", f"Workflow {workflow_id} not found")
    engine.plan_cache.invalidate(workflow_id)
    return SuccessResponse(message=f"Workflow {workflow_id} deleted")


@router.get("/{workflow_id}/plan")
async def get_plan(
    workflow_id: str,
    engine = Depends(get_engine),
    workflows = Depends(get_workflow_repository)
) -> Dict[str, Any]:
    """Execution plan: nodes grouped into dependency levels"""
    record = await _get_record(workflows, workflow_id)
    return engine.plan(record.definition).to_dict()


@router.post("/{workflow_id}/execute", status_code=status.HTTP_202_ACCEPTED)
async def execute_workflow(
    workflow_id: str,
    request: Optional[ExecuteRequest] = None,
    engine = Depends(get_engine),
    workflows = Depends(get_workflow_repository)
) -> Dict[str, Any]:
    """Run a stored workflow manually; disabled workflows can still be run by hand"""
    request = request or ExecuteRequest()
    record = await _get_record(workflows, workflow_id)
    try:
        execution = await engine.submit(record.definition, request.payload, mode="manual")
    except EngineOverloadedError as e:
        raise api_error(status.HTTP_503_SERVICE_UNAVAILABLE, "ENGINE_OVERLOADED", str(e))
    except InvalidExecutionStateError as e:
        raise api_error(status.HTTP_503_SERVICE_UNAVAILABLE, "SERVICE_UNAVAILABLE", str(e))

    if request.wait:
        try:
            execution = await engine.wait_for_execution(execution.id, request.timeout)
        except asyncio.TimeoutError:
            execution = await engine.get_execution(execution.id)
    return execution.to_dict()
