from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Index, String, Text
from sqlalchemy.sql import func

from database.base import Base


class ProjectRecord(Base):
    """One row per project; ``data`` holds the full project document."""

    __tablename__ = "projects"

    project_id = Column(String(64), primary_key=True, index=True, nullable=False)
    title = Column(String, nullable=False)
    data = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_projects_updated_at", updated_at),)

    def __repr__(self):
        return f"<ProjectRecord project_id={self.project_id} title={self.title} updated_at={self.updated_at}>"


class AppSettingRecord(Base):
    __tablename__ = "app_settings"

    key = Column(String(64), primary_key=True, nullable=False)
    data = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<AppSettingRecord key={self.key} data={self.data}>"


class AgentRun(Base):
    __tablename__ = "agent_runs"

    run_id = Column(String(32), primary_key=True, default=lambda: uuid4().hex)
    project_id = Column(String(64), index=True, nullable=False)
    trace = Column(JSON, nullable=False)
    final_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<AgentRun run_id={self.run_id} project_id={self.project_id}>"
