from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from filiacao.models.audit import AuditLog


class AuditService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add_event(
        self,
        action: str,
        *,
        entity_type: str,
        entity_id: str | UUID,
        proposal_id: UUID | None = None,
        admin_user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> AuditLog:
        """Inclui o registro na transação corrente sem confirmá-la."""
        log = AuditLog(
            admin_user_id=admin_user_id,
            proposal_id=proposal_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            details=details or {},
            idempotency_key=idempotency_key,
        )
        self.session.add(log)
        return log

    def record_event(
        self,
        action: str,
        *,
        entity_type: str,
        entity_id: str | UUID,
        proposal_id: UUID | None = None,
        admin_user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> AuditLog:
        log = self.add_event(
            action,
            entity_type=entity_type,
            entity_id=entity_id,
            proposal_id=proposal_id,
            admin_user_id=admin_user_id,
            details=details,
            idempotency_key=idempotency_key,
        )
        self.session.commit()
        self.session.refresh(log)
        return log

    def find_by_idempotency_key(self, key: str) -> AuditLog | None:
        return self.session.exec(select(AuditLog).where(AuditLog.idempotency_key == key)).first()

    def list_events(
        self,
        proposal_id: Optional[UUID] = None,
        action: Optional[str] = None,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[AuditLog], int]:
        query = select(AuditLog)
        if proposal_id:
            query = query.where(AuditLog.proposal_id == proposal_id)
        if action:
            query = query.where(AuditLog.action == action)
        if start_at:
            query = query.where(AuditLog.created_at >= start_at)
        if end_at:
            query = query.where(AuditLog.created_at <= end_at)

        total = self.session.exec(select(func.count()).select_from(query.subquery())).one()

        items = self.session.exec(
            query.order_by(AuditLog.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(items), total
