"""
SQLAlchemy repository implementations
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy import select, delete, func
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.workflow import WorkflowDefinition
from ..models.execution import Execution, ExecutionStatus, utcnow
from ..exceptions import (
    StoreWriteError, ExecutionFinalizedError, ExecutionNotFoundError, UnknownWorkflowError
)
from .repository import WorkflowRepository, ExecutionStore, WorkflowRecord, Page
from .sqlalchemy_models import Base, WorkflowRow, ExecutionRow, NodeRunRow


logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DatabaseManager:
    """Database connection manager"""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker = None

    async def initialize(self):
        """Open the engine and create tables"""
        url = make_url(self.database_url)
        if url.get_backend_name() == "sqlite":
            options: Dict[str, Any] = {}
            if url.database in (None, "", ":memory:"):
                # In-memory SQLite lives on a single shared connection
                options["poolclass"] = StaticPool
        else:
            options = {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}

        self.engine = create_async_engine(self.database_url, echo=False, **options)

        self.async_session_maker = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info(f"Database initialized: {self.engine.url.render_as_string(hide_password=True)}")

    async def close(self):
        if self.engine:
            await self.engine.dispose()

    @asynccontextmanager
    async def get_session(self):
        """Session that commits on success and rolls back on error"""
        if self.async_session_maker is None:
            raise StoreWriteError("Database is not initialized")
        async with self.async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


class SQLAlchemyWorkflowRepository(WorkflowRepository):
    """SQLAlchemy workflow repository"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def save(self, definition: WorkflowDefinition, enabled: Optional[bool] = None) -> WorkflowRecord:
        now = utcnow()
        async with self.db.get_session() as session:
            row = await session.get(WorkflowRow, definition.id)
            if row is None:
                row = WorkflowRow(
                    id=definition.id,
                    enabled=True if enabled is None else enabled,
                    created_at=now,
                )
                session.add(row)
            elif enabled is not None:
                row.enabled = enabled
            row.name = definition.name
            row.version = definition.version
            row.definition = definition.to_dict()
            row.updated_at = now
            await session.flush()
            return WorkflowRecord(
                definition=definition,
                enabled=row.enabled,
                created_at=_aware(row.created_at),
                updated_at=now,
            )

    async def get(self, workflow_id: str) -> Optional[WorkflowRecord]:
        async with self.db.get_session() as session:
            row = await session.get(WorkflowRow, workflow_id)
            return self._row_to_record(row) if row else None

    async def list(self, offset: int = 0, limit: int = 100) -> Page[WorkflowRecord]:
        async with self.db.get_session() as session:
            total = await session.scalar(select(func.count()).select_from(WorkflowRow))
            result = await session.execute(
                select(WorkflowRow).order_by(WorkflowRow.created_at).offset(offset).limit(limit)
            )
            records = [self._row_to_record(row) for row in result.scalars().all()]
            return Page(items=records, total=total or 0, offset=offset, limit=limit)

    async def set_enabled(self, workflow_id: str, enabled: bool) -> WorkflowRecord:
        async with self.db.get_session() as session:
            row = await session.get(WorkflowRow, workflow_id)
            if row is None:
                raise UnknownWorkflowError(workflow_id)
            row.enabled = enabled
            row.updated_at = utcnow()
            await session.flush()
            return self._row_to_record(row)

    async def delete(self, workflow_id: str) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(delete(WorkflowRow).where(WorkflowRow.id == workflow_id))
            return result.rowcount > 0

    def _row_to_record(self, row: WorkflowRow) -> WorkflowRecord:
        from ..core.parser import WorkflowParser

        return WorkflowRecord(
            definition=WorkflowParser().load(dict(row.definition)),
            enabled=row.enabled,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )


class SQLAlchemyExecutionStore(ExecutionStore):
    """SQLAlchemy execution store"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, execution_id: str) -> asyncio.Lock:
        return self._locks.setdefault(execution_id, asyncio.Lock())

    async def create(self, execution: Execution) -> str:
        snapshot = execution.to_dict()
        node_runs = snapshot.pop("nodeRuns")
        async with self._lock_for(execution.id):
            async with self.db.get_session() as session:
                if await session.get(ExecutionRow, execution.id) is not None:
                    raise StoreWriteError(f"Execution already exists: {execution.id}")
                row = ExecutionRow(
                    id=execution.id,
                    workflow_id=execution.workflow_id,
                    status=execution.status.value,
                    mode=execution.mode,
                    snapshot=snapshot,
                    created_at=execution.created_at,
                    updated_at=execution.updated_at,
                )
                for node_id, run in node_runs.items():
                    row.node_runs.append(self._node_run_row(node_id, run))
                session.add(row)
        return execution.id

    async def update(self, execution_id: str, patch: Dict[str, Any]) -> Execution:
        async with self._lock_for(execution_id):
            async with self.db.get_session() as session:
                row = await session.get(ExecutionRow, execution_id)
                if row is None:
                    raise ExecutionNotFoundError(execution_id)

                execution = self._row_to_execution(row)
                if execution.is_terminal_state():
                    raise ExecutionFinalizedError(execution_id)
                execution.apply_patch(patch)

                snapshot = execution.to_dict()
                node_runs = snapshot.pop("nodeRuns")
                row.snapshot = snapshot
                row.status = execution.status.value
                row.updated_at = execution.updated_at

                existing = {run_row.node_id: run_row for run_row in row.node_runs}
                for node_id in patch.get("nodeRuns", {}):
                    data = node_runs[node_id]
                    run_row = existing.get(node_id)
                    if run_row is None:
                        row.node_runs.append(self._node_run_row(node_id, data))
                    else:
                        run_row.status = data["status"]
                        run_row.attempts = data["attempts"]
                        run_row.snapshot = data
                return execution

    async def get(self, execution_id: str) -> Execution:
        async with self.db.get_session() as session:
            row = await session.get(ExecutionRow, execution_id)
            if row is None:
                raise ExecutionNotFoundError(execution_id)
            return self._row_to_execution(row)

    async def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        offset: int = 0,
        limit: int = 20
    ) -> Page[Execution]:
        async with self.db.get_session() as session:
            query = select(ExecutionRow)
            count_query = select(func.count()).select_from(ExecutionRow)
            if workflow_id is not None:
                query = query.where(ExecutionRow.workflow_id == workflow_id)
                count_query = count_query.where(ExecutionRow.workflow_id == workflow_id)
            if status is not None:
                query = query.where(ExecutionRow.status == status.value)
                count_query = count_query.where(ExecutionRow.status == status.value)

            total = await session.scalar(count_query)
            query = query.order_by(ExecutionRow.created_at.desc()).offset(offset).limit(limit)
            result = await session.execute(query)
            executions = [self._row_to_execution(row) for row in result.scalars().all()]
            return Page(items=executions, total=total or 0, offset=offset, limit=limit)

    def _node_run_row(self, node_id: str, data: Dict[str, Any]) -> NodeRunRow:
        return NodeRunRow(
            node_id=node_id,
            status=data["status"],
            attempts=data["attempts"],
            snapshot=data,
        )

    def _row_to_execution(self, row: ExecutionRow) -> Execution:
        data = dict(row.snapshot)
        data["nodeRuns"] = {run_row.node_id: dict(run_row.snapshot) for run_row in row.node_runs}
        return Execution.from_dict(data)
