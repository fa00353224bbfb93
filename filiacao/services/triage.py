from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from filiacao.core.config import Settings, get_settings
from filiacao.core.errors import ConflictError
from filiacao.core.logging_setup import logger
from filiacao.models.admin import AdminRole, AdminUser
from filiacao.models.base import utcnow
from filiacao.models.proposal import OPEN_STATUSES, Proposal, ProposalStatus
from filiacao.services.audit import AuditService
from filiacao.services.state_machine import ProposalAction, ProposalStateMachine


@dataclass
class TriageReport:
    recalculated: int = 0
    breached: int = 0
    assigned: int = 0


class ProposalTriageService:
    """Rotina periódica: recálculo de SLA e distribuição automática para analistas."""

    def __init__(self, session: Session, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.state_machine = ProposalStateMachine(session, AuditService(session))

    def run(self, now: datetime | None = None) -> TriageReport:
        report = self.recalculate_sla(now)
        if self.settings.auto_assign_analyst:
            report.assigned = self.auto_assign_analysts()
        logger.info(
            "triage.completed",
            extra={"recalculated": report.recalculated, "breached": report.breached, "assigned": report.assigned},
        )
        return report

    def recalculate_sla(self, now: datetime | None = None) -> TriageReport:
        now = now or utcnow()
        window = timedelta(days=self.settings.sla_days)
        report = TriageReport()

        proposals = self.session.exec(select(Proposal).where(Proposal.status.in_(OPEN_STATUSES))).all()
        for proposal in proposals:
            started_at = proposal.sla_started_at or proposal.submitted_at
            if not started_at:
                continue

            due_at = started_at + window
            # Uma violação registrada nunca é apagada, mesmo que o prazo avance.
            breached_at = proposal.sla_breached_at or (now if due_at < now else None)

            if proposal.sla_due_at == due_at and proposal.sla_breached_at == breached_at:
                continue

            if breached_at and not proposal.sla_breached_at:
                report.breached += 1
            proposal.sla_started_at = started_at
            proposal.sla_due_at = due_at
            proposal.sla_breached_at = breached_at
            self.session.add(proposal)
            report.recalculated += 1

        self.session.commit()
        return report

    def auto_assign_analysts(self) -> int:
        """Distribui propostas SUBMITTED sem analista para o analista com menor carga aberta."""
        analysts = [
            user
            for user in self.session.exec(
                select(AdminUser).where(AdminUser.is_active == True).order_by(AdminUser.created_at, AdminUser.email)  # noqa: E712
            ).all()
            if user.has_role(AdminRole.ANALYST)
        ]
        if not analysts:
            return 0

        load = self._open_load([analyst.id for analyst in analysts])
        names = {analyst.id: analyst.name for analyst in analysts}

        unassigned = self.session.exec(
            select(Proposal.id)
            .where(Proposal.status == ProposalStatus.SUBMITTED, Proposal.assigned_analyst_id.is_(None))
            .order_by(Proposal.submitted_at, Proposal.created_at)
        ).all()

        assigned = 0
        for proposal_id in unassigned:
            # min() devolve o primeiro empate na ordem da lista de analistas.
            target = min(load, key=load.__getitem__)
            if self._assign(proposal_id, target):
                load[target] += 1
                assigned += 1
                logger.info(
                    "triage.auto_assigned",
                    extra={"proposal_id": str(proposal_id), "analyst": names[target]},
                )
        return assigned

    def _assign(self, proposal_id: UUID, analyst_id: UUID) -> bool:
        proposal = self.state_machine.lock(proposal_id)
        if proposal.status != ProposalStatus.SUBMITTED or proposal.assigned_analyst_id is not None:
            self.session.rollback()
            return False
        try:
            self.state_machine.stage_transition(
                proposal,
                proposal.status,
                "Atribuicao automatica",
                changes={"assigned_analyst_id": analyst_id},
            )
            self.state_machine.record(
                proposal,
                ProposalAction.AUTO_ASSIGN_ANALYST,
                details={"analystId": str(analyst_id)},
            )
            self.state_machine.commit()
        except ConflictError:
            logger.warning("triage.assign_conflict", extra={"proposal_id": str(proposal_id)})
            return False
        return True

    def _open_load(self, analyst_ids: list[UUID]) -> dict[UUID, int]:
        load = {analyst_id: 0 for analyst_id in analyst_ids}
        rows = self.session.exec(
            select(Proposal.assigned_analyst_id, func.count(Proposal.id))
            .where(Proposal.assigned_analyst_id.in_(analyst_ids), Proposal.status.in_(OPEN_STATUSES))
            .group_by(Proposal.assigned_analyst_id)
        ).all()
        for analyst_id, count in rows:
            if analyst_id in load:
                load[analyst_id] = count
        return load
