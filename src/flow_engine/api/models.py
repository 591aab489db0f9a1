"""
API request and response models
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from enum import Enum


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatusEnum(str, Enum):
    """Execution status (API)"""
    NEW = "new"
    RUNNING = "running"
    WAITING = "waiting"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"


# Workflow models

class WorkflowUpdateRequest(BaseModel):
    """Workflow update request"""
    enabled: bool = Field(..., description="Accept triggers")


class ExecuteRequest(BaseModel):
    """Manual execution request"""
    payload: Any = Field(None, description="Trigger payload converted to items")
    wait: bool = Field(False, description="Block until the execution is terminal")
    timeout: Optional[float] = Field(None, gt=0, description="Wait timeout in seconds")


class ResumeRequest(BaseModel):
    """Resume a waiting node"""
    items: Any = Field(None, description="Items or payload; the node's input is reused when absent")


class TriggerAcceptedResponse(BaseModel):
    """Trigger accepted"""
    executionId: str = Field(..., description="Execution ID")
    status: str = Field("accepted", description="Acceptance status")


# Generic models

class ErrorResponse(BaseModel):
    """Error response"""
    success: bool = Field(False, description="Always false")
    status: int = Field(..., description="HTTP status code")
    code: str = Field(..., description="Machine readable error code")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Error details")
    requestId: Optional[str] = Field(None, description="Request ID")
    timestamp: datetime = Field(default_factory=_now, description="Timestamp")


class SuccessResponse(BaseModel):
    """Success response"""
    success: bool = Field(True, description="Succeeded")
    message: str = Field(..., description="Message")
    data: Optional[Dict[str, Any]] = Field(None, description="Additional data")


class PaginatedResponse(BaseModel):
    """Paginated response"""
    total: int = Field(..., description="Total count")
    offset: int = Field(..., description="Offset")
    limit: int = Field(..., description="Page size")
    hasMore: bool = Field(False, description="More pages follow")
    items: List[Any] = Field(..., description="Items")


class StatusResponse(BaseModel):
    """Service status"""
    status: str = Field("ok", description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Version")


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Health status", examples=["healthy", "unhealthy"])
    version: str = Field(..., description="Version")
    timestamp: datetime = Field(default_factory=_now, description="Timestamp")
    checks: Dict[str, bool] = Field(default_factory=dict, description="Component checks")


class MetricsResponse(BaseModel):
    """Metrics response"""
    active_executions: int = Field(..., description="Executions currently driven by the engine")
    worker_pool: Dict[str, int] = Field(default_factory=dict, description="Worker pool usage")
    store_backlog: int = Field(0, description="Pending store writes")
    plan_cache_size: int = Field(0, description="Cached execution plans")
    counters: Dict[str, Any] = Field(default_factory=dict, description="Counters")
    histograms: Dict[str, Any] = Field(default_factory=dict, description="Histograms")
