"""API routers"""

from . import workflows, executions, webhooks, monitoring

__all__ = ["workflows", "executions", "webhooks", "monitoring"]
