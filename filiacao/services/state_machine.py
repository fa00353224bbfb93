"""Ciclo de vida da proposta: tabela de transições, ledger de status e trava otimista.

Toda mudança de status passa por `ProposalStateMachine.stage_transition`, que
grava o novo status com um UPDATE condicionado à `version` lida, incrementa a
versão e inclui exatamente uma linha em `StatusHistory`. O commit fica com o
chamador, junto com a linha de auditoria da mesma operação.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Session, select

from filiacao.core.errors import ConflictError, InvalidOperationError, NotFoundError
from filiacao.core.logging_setup import logger
from filiacao.models.base import utcnow
from filiacao.models.proposal import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    Proposal,
    ProposalStatus,
    StatusHistory,
)
from filiacao.services.audit import AuditService


class ProposalAction(str, Enum):
    SUBMIT = "SUBMIT"
    ASSIGN_ANALYST = "ASSIGN_ANALYST"
    AUTO_ASSIGN_ANALYST = "AUTO_ASSIGN_ANALYST"
    START_REVIEW = "START_REVIEW"
    REQUEST_CHANGES = "REQUEST_CHANGES"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    RESEND_SIGNATURE = "RESEND_SIGNATURE"
    EXPORT_PDF = "EXPORT_PDF"
    CANCEL = "CANCEL"
    FINALIZE = "FINALIZE"
    CLICKSIGN_WEBHOOK = "CLICKSIGN_WEBHOOK"


NON_TERMINAL_STATUSES = frozenset(status for status in ProposalStatus if status not in TERMINAL_STATUSES)

# None = permitido a partir de qualquer status.
# Status terminais encerram o processo; ações que reabrem o fluxo ou contatam o candidato não se aplicam a eles.
ALLOWED_FROM: dict[ProposalAction, frozenset[ProposalStatus] | None] = {
    ProposalAction.ASSIGN_ANALYST: None,
    ProposalAction.EXPORT_PDF: None,
    ProposalAction.AUTO_ASSIGN_ANALYST: frozenset({ProposalStatus.SUBMITTED}),
    ProposalAction.START_REVIEW: NON_TERMINAL_STATUSES - {ProposalStatus.UNDER_REVIEW},
    ProposalAction.REQUEST_CHANGES: NON_TERMINAL_STATUSES,
    ProposalAction.APPROVE: frozenset(OPEN_STATUSES),
    ProposalAction.REJECT: NON_TERMINAL_STATUSES,
    ProposalAction.RESEND_SIGNATURE: NON_TERMINAL_STATUSES,
    ProposalAction.CANCEL: NON_TERMINAL_STATUSES,
    ProposalAction.FINALIZE: frozenset({ProposalStatus.SIGNED}),
    ProposalAction.CLICKSIGN_WEBHOOK: frozenset({ProposalStatus.PENDING_SIGNATURE}),
}


def is_allowed(action: ProposalAction, status: ProposalStatus) -> bool:
    allowed = ALLOWED_FROM.get(action)
    return allowed is None or status in allowed


class ProposalStateMachine:
    def __init__(self, session: Session, audit: AuditService | None = None) -> None:
        self.session = session
        self.audit = audit or AuditService(session)

    def lock(self, proposal_id: UUID) -> Proposal:
        """Carrega a proposta com FOR UPDATE (onde o banco suporta) e a versão atual do banco."""
        statement = (
            select(Proposal)
            .where(Proposal.id == proposal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        proposal = self.session.exec(statement).first()
        if not proposal:
            raise NotFoundError("Proposta nao encontrada")
        return proposal

    def ensure_allowed(self, proposal: Proposal, action: ProposalAction) -> None:
        if not is_allowed(action, proposal.status):
            raise InvalidOperationError("Status da proposta invalido")

    def stage_transition(
        self,
        proposal: Proposal,
        to_status: ProposalStatus,
        reason: str | None,
        *,
        changes: dict[str, Any] | None = None,
    ) -> StatusHistory:
        """Aplica o status (e colunas extras) se a versão não mudou desde a leitura; não faz commit."""
        expected_version = proposal.version
        now = utcnow()
        values: dict[str, Any] = {
            **(changes or {}),
            "status": to_status,
            "version": expected_version + 1,
            "updated_at": now,
        }
        statement = (
            update(Proposal)
            .where(Proposal.id == proposal.id, Proposal.version == expected_version)
            .values(**values)
        )
        result = self.session.connection().execute(statement)
        if result.rowcount != 1:
            self.session.rollback()
            logger.warning(
                "proposal.version_conflict",
                extra={"proposal_id": str(proposal.id), "expected_version": expected_version},
            )
            raise ConflictError("Proposta alterada por outra operacao; tente novamente")

        from_status = proposal.status
        for key, value in values.items():
            set_committed_value(proposal, key, value)

        history = StatusHistory(
            proposal_id=proposal.id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            created_at=now,
        )
        self.session.add(history)
        return history

    def record(
        self,
        proposal: Proposal,
        action: ProposalAction,
        *,
        admin_user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.audit.add_event(
            action.value,
            entity_type="Proposal",
            entity_id=proposal.id,
            proposal_id=proposal.id,
            admin_user_id=admin_user_id,
            details=details,
        )

    def commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Proposta alterada por outra operacao; tente novamente") from exc

    def transition(
        self,
        proposal_id: UUID,
        action: ProposalAction,
        *,
        to_status: ProposalStatus | None = None,
        reason: str | None,
        admin_user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        changes: dict[str, Any] | None = None,
    ) -> tuple[Proposal, StatusHistory]:
        """Trava, valida, aplica o status, grava histórico e auditoria e confirma numa única transação.

        Sem `to_status` o status permanece o mesmo (ex.: atribuição de analista),
        mas a versão avança e o ledger recebe a linha com from == to.
        """
        proposal = self.lock(proposal_id)
        self.ensure_allowed(proposal, action)
        target = to_status or proposal.status
        history = self.stage_transition(proposal, target, reason, changes=changes)
        self.record(proposal, action, admin_user_id=admin_user_id, details=details)
        self.commit()
        self.session.refresh(proposal)
        logger.info(
            "proposal.transition",
            extra={
                "proposal_id": str(proposal.id),
                "action": action.value,
                "from_status": history.from_status.value if history.from_status else None,
                "to_status": target.value,
            },
        )
        return proposal, history

    def history(self, proposal_id: UUID) -> list[StatusHistory]:
        statement = (
            select(StatusHistory)
            .where(StatusHistory.proposal_id == proposal_id)
            .order_by(StatusHistory.id)
        )
        return list(self.session.exec(statement).all())


def time_in_status(entries: Iterable[StatusHistory], *, until=None) -> dict[str, float]:
    """Soma, em segundos, o tempo passado em cada status a partir do ledger ordenado."""
    totals: dict[str, float] = {}
    ordered = list(entries)
    end = until or utcnow()
    for index, entry in enumerate(ordered):
        leave = ordered[index + 1].created_at if index + 1 < len(ordered) else end
        elapsed = max((leave - entry.created_at).total_seconds(), 0.0)
        key = entry.to_status.value
        totals[key] = totals.get(key, 0.0) + elapsed
    return totals
