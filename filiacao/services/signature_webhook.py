"""Conciliação dos webhooks do provedor de assinatura (Clicksign).

A verificação de assinatura aceita digest HMAC-SHA256 em hex ou base64, com ou
sem prefixo `sha256=`/`v1=`. Sem segredo configurado, requisições sem
assinatura são aceitas (modo permissivo de ambientes de teste).

Cada evento novo gera exatamente uma linha de auditoria `CLICKSIGN_WEBHOOK`
com `idempotency_key = CLICKSIGN_WEBHOOK:<eventId>`; a coluna é única, então
uma entrega duplicada concorrente falha no commit e é tratada como repetida.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from filiacao.core.config import Settings, get_settings
from filiacao.core.logging_setup import logger
from filiacao.models.audit import ENTITY_ID_MAX_LENGTH, IDEMPOTENCY_KEY_MAX_LENGTH
from filiacao.models.base import utcnow
from filiacao.models.proposal import ProposalStatus
from filiacao.models.signature import SignatureEnvelope, SignatureStatus
from filiacao.services.audit import AuditService
from filiacao.services.state_machine import ProposalAction, ProposalStateMachine, is_allowed

WEBHOOK_ACTION = ProposalAction.CLICKSIGN_WEBHOOK.value
ENTITY_TYPE = "SignatureEnvelope"

Extractor = Callable[[Mapping[str, Any]], Any]


def field_path(*path: str) -> Extractor:
    """Estratégia de extração: percorre o caminho e devolve o valor (ou None)."""

    def extract(payload: Mapping[str, Any]) -> Any:
        current: Any = payload
        for key in path:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)
        return current

    return extract


def first_match(payload: Mapping[str, Any], strategies: Iterable[Extractor]) -> str | None:
    for strategy in strategies:
        value = strategy(payload)
        if value is None or value == "":
            continue
        if isinstance(value, (str, int)):
            return str(value)
    return None


EVENT_ID_STRATEGIES: tuple[Extractor, ...] = (
    field_path("id"),
    field_path("event_id"),
    field_path("eventId"),
    field_path("event", "id"),
    field_path("data", "id"),
)

EVENT_TYPE_STRATEGIES: tuple[Extractor, ...] = (
    field_path("event_type"),
    field_path("type"),
    field_path("event", "name"),
    field_path("event", "type"),
)

ENVELOPE_ID_STRATEGIES: tuple[Extractor, ...] = (
    field_path("envelope_id"),
    field_path("envelopeId"),
    field_path("envelope", "id"),
    field_path("data", "attributes", "envelope_id"),
    field_path("data", "attributes", "envelopeId"),
)


def extract_event_id(payload: Mapping[str, Any], raw_body: bytes) -> str:
    return first_match(payload, EVENT_ID_STRATEGIES) or hashlib.sha256(raw_body).hexdigest()


def extract_event_type(payload: Mapping[str, Any]) -> str | None:
    return first_match(payload, EVENT_TYPE_STRATEGIES)


def extract_envelope_id(payload: Mapping[str, Any]) -> str | None:
    return first_match(payload, ENVELOPE_ID_STRATEGIES)


@dataclass(frozen=True)
class EventOutcome:
    envelope_status: SignatureStatus | None = None
    proposal_status: ProposalStatus | None = None


SIGNED_EVENTS = frozenset({"close", "document_closed", "signed", "completed"})
CANCELED_EVENTS = frozenset({"refusal", "canceled", "cancel", "declined"})
EXPIRED_EVENTS = frozenset({"expired", "deadline"})
RUNNING_EVENTS = frozenset({"sign", "running"})


def map_event(event_type: str) -> EventOutcome:
    normalized = event_type.strip().lower()
    if normalized in SIGNED_EVENTS:
        return EventOutcome(SignatureStatus.SIGNED, ProposalStatus.SIGNED)
    if normalized in CANCELED_EVENTS:
        return EventOutcome(SignatureStatus.CANCELED, ProposalStatus.REJECTED)
    if normalized in EXPIRED_EVENTS:
        return EventOutcome(SignatureStatus.EXPIRED, ProposalStatus.REJECTED)
    if normalized in RUNNING_EVENTS:
        return EventOutcome(SignatureStatus.SENT)
    return EventOutcome()


def _fit(value: str, limit: int) -> str:
    """Valores maiores que a coluna viram "sha256:<hex>" para manter unicidade sem estourar o tamanho."""
    if len(value) <= limit:
        return value
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def idempotency_key(event_id: str) -> str:
    return f"{WEBHOOK_ACTION}:{_fit(event_id, IDEMPOTENCY_KEY_MAX_LENGTH - len(WEBHOOK_ACTION) - 1)}"


def _normalize_signature(header: str) -> str:
    value = header.strip()
    for prefix in ("sha256=", "v1="):
        if value.startswith(prefix):
            value = value[len(prefix) :]
    return value.strip()


@dataclass
class WebhookResult:
    ok: bool
    event_id: str
    duplicated: bool = False

    def as_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": self.ok, "eventId": self.event_id}
        if self.duplicated:
            body["duplicated"] = True
        return body


class ClicksignWebhookService:
    def __init__(self, session: Session, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.audit = AuditService(session)
        self.state_machine = ProposalStateMachine(session, self.audit)

    def verify_signature(self, raw_body: bytes, signature_header: str | None) -> bool:
        secret = self.settings.clicksign_webhook_secret
        if not secret:
            return True
        if not signature_header:
            return False

        digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
        received = _normalize_signature(signature_header)
        candidates = (digest.hex(), base64.b64encode(digest).decode("ascii"))
        return any(hmac.compare_digest(candidate.encode(), received.encode()) for candidate in candidates)

    def handle_webhook(self, payload: Mapping[str, Any], raw_body: bytes) -> WebhookResult:
        event_id = extract_event_id(payload, raw_body)
        key = idempotency_key(event_id)

        if self.audit.find_by_idempotency_key(key):
            logger.info("clicksign.webhook.duplicated", extra={"event_id": event_id})
            return WebhookResult(ok=True, event_id=event_id, duplicated=True)

        envelope_id = extract_envelope_id(payload)
        event_type = extract_event_type(payload)

        if not envelope_id or not event_type:
            return self._record_anomaly(
                event_id, payload, envelope_id or "unknown", "missing envelopeId or eventType"
            )

        envelope = self.session.exec(
            select(SignatureEnvelope)
            .where(SignatureEnvelope.envelope_id == envelope_id)
            .order_by(SignatureEnvelope.created_at.desc())
        ).first()
        if not envelope:
            return self._record_anomaly(event_id, payload, envelope_id, "envelope not found")

        outcome = map_event(event_type)
        details: dict[str, Any] = {"eventId": event_id, "eventType": event_type, "payload": dict(payload)}

        if outcome.proposal_status:
            proposal = self.state_machine.lock(envelope.proposal_id)
            if is_allowed(ProposalAction.CLICKSIGN_WEBHOOK, proposal.status):
                self.state_machine.stage_transition(
                    proposal,
                    outcome.proposal_status,
                    f"Clicksign: {event_type}",
                    changes=self._timestamps(outcome.proposal_status),
                )
            else:
                details["note"] = f"proposal status {proposal.status.value} unchanged"

        if outcome.envelope_status and envelope.status != outcome.envelope_status:
            envelope.status = outcome.envelope_status
            envelope.updated_at = utcnow()
            self.session.add(envelope)

        self.audit.add_event(
            WEBHOOK_ACTION,
            entity_type=ENTITY_TYPE,
            entity_id=envelope.id,
            proposal_id=envelope.proposal_id,
            details=details,
            idempotency_key=key,
        )
        if not self._commit():
            return WebhookResult(ok=True, event_id=event_id, duplicated=True)

        logger.info(
            "clicksign.webhook",
            extra={"event_id": event_id, "envelope_id": envelope_id, "event_type": event_type},
        )
        return WebhookResult(ok=True, event_id=event_id)

    def _record_anomaly(self, event_id: str, payload: Mapping[str, Any], entity_id: str, note: str) -> WebhookResult:
        self.audit.add_event(
            WEBHOOK_ACTION,
            entity_type=ENTITY_TYPE,
            entity_id=_fit(entity_id, ENTITY_ID_MAX_LENGTH),
            details={"eventId": event_id, "payload": dict(payload), "note": note},
            idempotency_key=idempotency_key(event_id),
        )
        if not self._commit():
            return WebhookResult(ok=True, event_id=event_id, duplicated=True)
        logger.warning("clicksign.webhook.anomaly", extra={"event_id": event_id, "note": note})
        return WebhookResult(ok=True, event_id=event_id)

    def _commit(self) -> bool:
        """Confirma a transação; False quando outra entrega do mesmo evento venceu a corrida."""
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info("clicksign.webhook.duplicated_race")
            return False
        return True

    @staticmethod
    def _timestamps(status: ProposalStatus) -> dict[str, Any]:
        if status is ProposalStatus.SIGNED:
            return {"signed_at": utcnow()}
        if status is ProposalStatus.REJECTED:
            return {"rejected_at": utcnow()}
        return {}
