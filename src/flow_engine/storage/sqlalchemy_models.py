"""
SQLAlchemy table definitions
"""
from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, ForeignKey, UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


class WorkflowRow(Base):
    """Stored workflow definition"""
    __tablename__ = 'workflows'

    id = Column(String(255), primary_key=True)
    name = Column(String(255), default='')
    version = Column(String(50), nullable=False)
    definition = Column(JSON, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_workflows_enabled', 'enabled'),
    )


class ExecutionRow(Base):
    """Execution snapshot; node runs live in their own table"""
    __tablename__ = 'executions'

    id = Column(String(64), primary_key=True)
    workflow_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False)
    mode = Column(String(20), nullable=False, default='manual')
    snapshot = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    node_runs = relationship(
        "NodeRunRow", back_populates="execution", cascade="all, delete-orphan", lazy="selectin",
        order_by="NodeRunRow.id"
    )

    __table_args__ = (
        Index('idx_executions_workflow_id', 'workflow_id'),
        Index('idx_executions_status', 'status'),
        Index('idx_executions_created_at', 'created_at'),
    )


class NodeRunRow(Base):
    """Per-node result inside one execution"""
    __tablename__ = 'node_runs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String(64), ForeignKey('executions.id', ondelete='CASCADE'), nullable=False)
    node_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    snapshot = Column(JSON, nullable=False)

    execution = relationship("ExecutionRow", back_populates="node_runs")

    __table_args__ = (
        UniqueConstraint('execution_id', 'node_id', name='unique_execution_node'),
        Index('idx_node_runs_execution_id', 'execution_id'),
    )
