"""
Webhook trigger route
"""
from fastapi import APIRouter, Depends, Request, status
import logging

from ..models import TriggerAcceptedResponse
from ..dependencies import api_error, get_trigger_service
from ...exceptions import UnknownWorkflowError, WorkflowDisabledError, EngineOverloadedError


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/{workflow_id}",
    response_model=TriggerAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def receive_webhook(
    workflow_id: str,
    request: Request,
    triggers = Depends(get_trigger_service)
) -> TriggerAcceptedResponse:
    """Start one execution per inbound request; the body becomes the trigger items"""
    body = await request.body()
    try:
        execution_id = await triggers.on_trigger(workflow_id, body or None, mode="webhook")
    except UnknownWorkflowError as e:
        raise api_error(status.HTTP_404_NOT_FOUND, "WORKFLOW_NOT_FOUND", str(e))
    except WorkflowDisabledError as e:
        raise api_error(status.HTTP_409_CONFLICT, "WORKFLOW_DISABLED", str(e))
    except EngineOverloadedError as e:
        raise api_error(status.HTTP_503_SERVICE_UNAVAILABLE, "ENGINE_OVERLOADED", str(e))
    return TriggerAcceptedResponse(executionId=execution_id)
