"""All ORM models. These map 1:1 to the Pydantic types but are SQLAlchemy models.

Tables: automations, contacts, crm_boards, deferred_tasks,
messaging_connections, conversation_messages.
Graph structure (nodes, edges) and statistics are stored as JSON documents.
"""

from sqlalchemy import Column, String, Integer, DateTime, JSON, Boolean, Text, ForeignKey, Index
from sqlalchemy.orm import DeclarativeBase
from datetime import datetime, timezone
import uuid


class Base(DeclarativeBase):
    pass


class AutomationModel(Base):
    __tablename__ = "automations"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    status = Column(String, default="draft", index=True)
    nodes = Column(JSON, default=list)
    edges = Column(JSON, default=list)
    allow_reactivation = Column(Boolean, default=False)
    block_on_open_chat = Column(Boolean, default=False)
    execution_stats = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class ContactModel(Base):
    __tablename__ = "contacts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, default="")
    phone = Column(String, nullable=False, index=True)
    tags = Column(JSON, default=list)
    crm_stage_id = Column(String, nullable=True)
    is_24h_window_open = Column(Boolean, default=False)
    is_opted_out = Column(Boolean, default=False)
    custom_fields = Column(JSON, default=dict)
    last_interaction = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class CrmBoardModel(Base):
    __tablename__ = "crm_boards"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    columns = Column(JSON, default=list)          # list of {id, title, tags_to_apply}
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class DeferredTaskModel(Base):
    __tablename__ = "deferred_tasks"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False, index=True)
    automation_id = Column(String, ForeignKey("automations.id"), nullable=False, index=True)
    resume_from_node_id = Column(String, nullable=False)
    execute_at = Column(DateTime(timezone=True), nullable=False)
    context = Column(JSON, default=dict)
    connection_id = Column(String, nullable=True)
    status = Column(String, default="pending")
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (Index("ix_deferred_task_status_due", "status", "execute_at"),)


class MessagingConnectionModel(Base):
    __tablename__ = "messaging_connections"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, default="")
    waba_id = Column(String, nullable=False)
    phone_number_id = Column(String, nullable=False)
    api_token = Column(Text, nullable=False)
    is_active = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class ConversationMessageModel(Base):
    __tablename__ = "conversation_messages"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False, index=True)
    direction = Column(String, default="outbound")
    source = Column(String, default="automation")
    text = Column(Text, default="")
    status = Column(String, default="sent")      # sent | failed | delivered
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
