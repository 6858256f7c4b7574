"""Data access layer.

This is the ONLY layer that talks to the database.  ``Repository``
implements every store protocol in ``autoflow.interfaces`` and hands
pydantic models, never ORM rows, back to the engine.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
import uuid

from autoflow.db.models import (
    AutomationModel, ContactModel, ConversationMessageModel, CrmBoardModel,
    DeferredTaskModel, MessagingConnectionModel,
)
from autoflow.types import (
    Automation, Contact, CrmBoard, CrmStage, DeferredTask, MessagingConnection,
    NodeStats, TaskStatus,
)

# Contact columns settable through update_contact; anything else is a custom field
_CONTACT_COLUMNS = {
    "name", "phone", "tags", "crm_stage_id", "is_24h_window_open",
    "is_opted_out", "custom_fields", "last_interaction",
}


def digits_only(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Repository:
    """All database operations for the automation engine."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Automations ──
    @staticmethod
    def _model_to_automation(m: AutomationModel) -> Automation:
        return Automation.model_validate({
            "id": m.id,
            "name": m.name,
            "status": m.status,
            "nodes": m.nodes or [],
            "edges": m.edges or [],
            "allow_reactivation": m.allow_reactivation,
            "block_on_open_chat": m.block_on_open_chat,
            "execution_stats": m.execution_stats or {},
            "created_at": _aware(m.created_at),
        })

    async def list_automations(self) -> list[Automation]:
        """All automations, newest first."""
        result = await self.session.execute(
            select(AutomationModel).order_by(AutomationModel.created_at.desc())
        )
        return [self._model_to_automation(m) for m in result.scalars().all()]

    async def get_automation(self, automation_id: str) -> Optional[Automation]:
        record = await self.session.get(AutomationModel, automation_id, populate_existing=True)
        return self._model_to_automation(record) if record is not None else None

    async def save_automation(self, automation: Automation) -> Automation:
        """Insert or fully replace an automation."""
        record = await self.session.get(AutomationModel, automation.id)
        if record is None:
            record = AutomationModel(id=automation.id, created_at=automation.created_at)
            self.session.add(record)
        record.name = automation.name
        record.status = automation.status.value
        record.nodes = [n.model_dump(mode="json") for n in automation.nodes]
        record.edges = [e.model_dump(mode="json") for e in automation.edges]
        record.allow_reactivation = automation.allow_reactivation
        record.block_on_open_chat = automation.block_on_open_chat
        record.execution_stats = {k: v.model_dump() for k, v in automation.execution_stats.items()}
        await self.session.commit()
        return automation

    async def save_stats(self, automation_id: str, stats: dict[str, NodeStats]) -> None:
        """Overwrite the whole statistics map in one UPDATE."""
        await self.session.execute(
            update(AutomationModel)
            .where(AutomationModel.id == automation_id)
            .values(execution_stats={k: v.model_dump() for k, v in stats.items()})
        )
        await self.session.commit()

    # ── Contacts ──
    @staticmethod
    def _model_to_contact(m: ContactModel) -> Contact:
        return Contact(
            id=m.id,
            name=m.name or "",
            phone=m.phone,
            tags=list(m.tags or []),
            crm_stage_id=m.crm_stage_id,
            is_24h_window_open=bool(m.is_24h_window_open),
            is_opted_out=bool(m.is_opted_out),
            custom_fields=dict(m.custom_fields or {}),
            last_interaction=_aware(m.last_interaction),
        )

    async def get_contact(self, contact_id: int) -> Optional[Contact]:
        record = await self.session.get(ContactModel, contact_id, populate_existing=True)
        return self._model_to_contact(record) if record is not None else None

    async def find_contact_by_phone(self, phone: str) -> Optional[Contact]:
        """Match on digits only, so "+1 (555) 010-0000" finds "15550100000"."""
        wanted = digits_only(phone)
        if not wanted:
            return None
        result = await self.session.execute(select(ContactModel).order_by(ContactModel.id))
        for m in result.scalars().all():
            if digits_only(m.phone) == wanted:
                return self._model_to_contact(m)
        return None

    async def create_contact(
        self,
        name: str,
        phone: str,
        tags: Optional[list[str]] = None,
        custom_fields: Optional[dict[str, Any]] = None,
        **fields: Any,
    ) -> Contact:
        record = ContactModel(
            name=name,
            phone=phone,
            tags=list(tags or []),
            custom_fields=dict(custom_fields or {}),
            **{k: v for k, v in fields.items() if k in _CONTACT_COLUMNS},
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_contact(record)

    async def update_contact(self, contact_id: int, **fields: Any) -> Optional[Contact]:
        """Partial update.  Keys that are not contact columns merge into custom_fields."""
        record = await self.session.get(ContactModel, contact_id, populate_existing=True)
        if record is None:
            return None
        custom = dict(record.custom_fields or {})
        for key, value in fields.items():
            if key == "custom_fields":
                custom.update(value or {})
            elif key in _CONTACT_COLUMNS:
                setattr(record, key, value)
            else:
                custom[key] = value
        record.custom_fields = custom
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_contact(record)

    async def set_opt_out(self, contact_id: int, opted_out: bool) -> None:
        await self.session.execute(
            update(ContactModel)
            .where(ContactModel.id == contact_id)
            .values(is_opted_out=opted_out)
        )
        await self.session.commit()

    # ── CRM ──
    async def list_boards(self) -> list[CrmBoard]:
        result = await self.session.execute(select(CrmBoardModel))
        return [
            CrmBoard(id=m.id, name=m.name, columns=m.columns or [])
            for m in result.scalars().all()
        ]

    async def save_board(self, board: CrmBoard) -> CrmBoard:
        record = await self.session.get(CrmBoardModel, board.id)
        if record is None:
            record = CrmBoardModel(id=board.id)
            self.session.add(record)
        record.name = board.name
        record.columns = [c.model_dump() for c in board.columns]
        await self.session.commit()
        return board

    async def get_stage(self, stage_id: str) -> Optional[CrmStage]:
        """Resolve a stage by id across every board."""
        for board in await self.list_boards():
            for stage in board.columns:
                if stage.id == stage_id:
                    return stage
        return None

    async def move_contact_to_stage(self, contact_id: int, stage: CrmStage) -> Optional[Contact]:
        """Set the stage and add the stage's tags_to_apply (deduplicated, order kept)."""
        record = await self.session.get(ContactModel, contact_id, populate_existing=True)
        if record is None:
            return None
        tags = list(record.tags or [])
        tags.extend(t for t in stage.tags_to_apply if t not in tags)
        record.crm_stage_id = stage.id
        record.tags = tags
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_contact(record)

    # ── Messaging connections ──
    @staticmethod
    def _model_to_connection(m: MessagingConnectionModel) -> MessagingConnection:
        return MessagingConnection(
            id=m.id,
            name=m.name or "",
            waba_id=m.waba_id,
            phone_number_id=m.phone_number_id,
            api_token=m.api_token,
            is_active=bool(m.is_active),
        )

    async def save_connection(self, connection: MessagingConnection) -> MessagingConnection:
        record = await self.session.get(MessagingConnectionModel, connection.id)
        if record is None:
            record = MessagingConnectionModel(id=connection.id)
            self.session.add(record)
        record.name = connection.name
        record.waba_id = connection.waba_id
        record.phone_number_id = connection.phone_number_id
        record.api_token = connection.api_token
        record.is_active = connection.is_active
        await self.session.commit()
        return connection

    async def get_active_connection(self) -> Optional[MessagingConnection]:
        result = await self.session.execute(
            select(MessagingConnectionModel)
            .where(MessagingConnectionModel.is_active.is_(True))
            .limit(1)
        )
        m = result.scalar_one_or_none()
        return self._model_to_connection(m) if m is not None else None

    async def get_connection(self, connection_id: str) -> Optional[MessagingConnection]:
        record = await self.session.get(MessagingConnectionModel, connection_id)
        return self._model_to_connection(record) if record is not None else None

    # ── Conversation log ──
    async def append_outbound(self, contact_id: int, text: str) -> str:
        message_id = str(uuid.uuid4())
        self.session.add(ConversationMessageModel(
            id=message_id, contact_id=contact_id, text=text, status="sent",
        ))
        await self.session.commit()
        return message_id

    async def append_inbound(self, contact_id: int, text: str) -> str:
        message_id = str(uuid.uuid4())
        self.session.add(ConversationMessageModel(
            id=message_id, contact_id=contact_id, text=text,
            direction="inbound", source="contact", status="delivered",
        ))
        await self.session.commit()
        return message_id

    async def mark_message_failed(self, contact_id: int, message_id: str) -> None:
        await self.session.execute(
            update(ConversationMessageModel)
            .where(
                ConversationMessageModel.id == message_id,
                ConversationMessageModel.contact_id == contact_id,
            )
            .values(status="failed")
        )
        await self.session.commit()

    async def list_messages(self, contact_id: int) -> list[dict]:
        result = await self.session.execute(
            select(ConversationMessageModel)
            .where(ConversationMessageModel.contact_id == contact_id)
            .order_by(ConversationMessageModel.created_at)
        )
        return [
            {"id": m.id, "text": m.text, "status": m.status, "direction": m.direction}
            for m in result.scalars().all()
        ]

    # ── Deferred tasks ──
    @staticmethod
    def _model_to_task(m: DeferredTaskModel) -> DeferredTask:
        return DeferredTask(
            id=m.id,
            contact_id=m.contact_id,
            automation_id=m.automation_id,
            resume_from_node_id=m.resume_from_node_id,
            execute_at=_aware(m.execute_at),
            context=m.context or {},
            connection_id=m.connection_id,
            status=TaskStatus(m.status),
            error_message=m.error_message,
            created_at=_aware(m.created_at),
        )

    async def insert_pending(
        self,
        automation_id: str,
        contact_id: int,
        resume_from_node_id: str,
        execute_at: datetime,
        context: dict[str, Any],
        connection_id: Optional[str],
    ) -> DeferredTask:
        record = DeferredTaskModel(
            automation_id=automation_id,
            contact_id=contact_id,
            resume_from_node_id=resume_from_node_id,
            execute_at=execute_at,
            context=context,
            connection_id=connection_id,
            status=TaskStatus.PENDING.value,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_task(record)

    async def get_task(self, task_id: str) -> Optional[DeferredTask]:
        record = await self.session.get(DeferredTaskModel, task_id, populate_existing=True)
        return self._model_to_task(record) if record is not None else None

    async def list_due(self, now: datetime, limit: int) -> list[DeferredTask]:
        result = await self.session.execute(
            select(DeferredTaskModel)
            .where(
                DeferredTaskModel.status == TaskStatus.PENDING.value,
                DeferredTaskModel.execute_at <= now,
            )
            .order_by(DeferredTaskModel.execute_at)
            .limit(limit)
        )
        return [self._model_to_task(m) for m in result.scalars().all()]

    async def claim(self, task_id: str) -> bool:
        """pending → processing as a conditional UPDATE; True only for the winner."""
        result = await self.session.execute(
            update(DeferredTaskModel)
            .where(
                DeferredTaskModel.id == task_id,
                DeferredTaskModel.status == TaskStatus.PENDING.value,
            )
            .values(status=TaskStatus.PROCESSING.value)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def mark_processed(self, task_id: str) -> None:
        await self._set_task_status(task_id, TaskStatus.PROCESSED)

    async def mark_failed(self, task_id: str, message: str) -> None:
        await self._set_task_status(task_id, TaskStatus.FAILED, error_message=message[:2000])

    async def _set_task_status(self, task_id: str, status: TaskStatus, **values: Any) -> None:
        await self.session.execute(
            update(DeferredTaskModel)
            .where(DeferredTaskModel.id == task_id)
            .values(status=status.value, **values)
        )
        await self.session.commit()


class SessionScopedRepository:
    """Session-per-call proxy, safe for long-running processes.

    ``Repository`` takes a single AsyncSession; keeping one open for the life
    of a poller or web worker risks stale connections and long transactions.
    This proxy opens a fresh session for every call instead and exposes the
    same methods, so it satisfies every store protocol.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._sf = session_factory

    def __getattr__(self, name: str):
        method = getattr(Repository, name)
        if name.startswith("_") or not callable(method):
            raise AttributeError(name)

        async def call(*args: Any, **kwargs: Any) -> Any:
            async with self._sf() as session:
                return await method(Repository(session), *args, **kwargs)

        call.__name__ = name
        return call
