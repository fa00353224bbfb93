import base64
import hashlib
import hmac
import json

import pytest
from sqlmodel import Session, select

from filiacao.models.audit import ENTITY_ID_MAX_LENGTH, IDEMPOTENCY_KEY_MAX_LENGTH, AuditLog
from filiacao.models.proposal import ProposalStatus, StatusHistory
from filiacao.models.signature import SignatureEnvelope, SignatureStatus
from filiacao.services.crypto import CryptoService
from filiacao.services.signature_webhook import (
    ClicksignWebhookService,
    extract_envelope_id,
    extract_event_id,
    extract_event_type,
    idempotency_key,
    map_event,
)
from tests.conftest import WEBHOOK_SECRET, build_settings, create_proposal


@pytest.fixture()
def service(db_session: Session, settings) -> ClicksignWebhookService:  # type: ignore[no-untyped-def]
    return ClicksignWebhookService(db_session, settings)


@pytest.fixture()
def pending(db_session: Session, crypto: CryptoService) -> tuple:
    proposal = create_proposal(db_session, crypto, status=ProposalStatus.PENDING_SIGNATURE)
    envelope = SignatureEnvelope(proposal_id=proposal.id, envelope_id="env-1", status=SignatureStatus.SENT)
    db_session.add(envelope)
    db_session.commit()
    db_session.refresh(envelope)
    return proposal, envelope


def _deliver(service: ClicksignWebhookService, payload: dict):  # type: ignore[no-untyped-def]
    raw = json.dumps(payload).encode("utf-8")
    return service.handle_webhook(payload, raw)


def _history(session: Session, proposal_id) -> list[StatusHistory]:  # type: ignore[no-untyped-def]
    return list(
        session.exec(
            select(StatusHistory).where(StatusHistory.proposal_id == proposal_id).order_by(StatusHistory.id)
        ).all()
    )


def test_signature_accepts_hex_base64_and_prefixes(service: ClicksignWebhookService) -> None:
    body = b'{"id":"evt-1"}'
    digest = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).digest()

    assert service.verify_signature(body, digest.hex())
    assert service.verify_signature(body, base64.b64encode(digest).decode())
    assert service.verify_signature(body, f"sha256={digest.hex()}")
    assert service.verify_signature(body, f"v1={base64.b64encode(digest).decode()}")
    assert not service.verify_signature(body, "sha256=deadbeef")
    assert not service.verify_signature(body, None)
    assert not service.verify_signature(b'{"id":"evt-2"}', digest.hex())


def test_signature_is_permissive_without_secret(db_session: Session) -> None:
    service = ClicksignWebhookService(db_session, build_settings(clicksign_webhook_secret=None))

    assert service.verify_signature(b"{}", None)


def test_extraction_strategies() -> None:
    nested = {"event": {"id": "evt-9", "name": "close"}, "data": {"attributes": {"envelope_id": "env-9"}}}
    assert extract_event_id(nested, b"{}") == "evt-9"
    assert extract_event_type(nested) == "close"
    assert extract_envelope_id(nested) == "env-9"

    assert extract_event_id({"eventId": 42}, b"{}") == "42"
    assert extract_event_id({"data": {"id": "d-1"}}, b"{}") == "d-1"
    assert extract_envelope_id({"envelope": {"id": "env-3"}}) == "env-3"

    raw = b'{"foo": "bar"}'
    assert extract_event_id({"foo": "bar"}, raw) == hashlib.sha256(raw).hexdigest()


@pytest.mark.parametrize(
    ("event_type", "envelope_status", "proposal_status"),
    [
        ("SIGNED", SignatureStatus.SIGNED, ProposalStatus.SIGNED),
        ("document_closed", SignatureStatus.SIGNED, ProposalStatus.SIGNED),
        ("refusal", SignatureStatus.CANCELED, ProposalStatus.REJECTED),
        ("Declined", SignatureStatus.CANCELED, ProposalStatus.REJECTED),
        ("deadline", SignatureStatus.EXPIRED, ProposalStatus.REJECTED),
        ("running", SignatureStatus.SENT, None),
        ("add_signer", None, None),
    ],
)
def test_event_mapping(event_type: str, envelope_status, proposal_status) -> None:  # type: ignore[no-untyped-def]
    outcome = map_event(event_type)

    assert outcome.envelope_status == envelope_status
    assert outcome.proposal_status == proposal_status


def test_signed_event_marks_proposal_and_envelope(service: ClicksignWebhookService, db_session: Session, pending: tuple) -> None:
    proposal, envelope = pending

    result = _deliver(service, {"id": "evt-1", "event_type": "signed", "envelope_id": "env-1"})

    assert result.as_dict() == {"ok": True, "eventId": "evt-1"}
    db_session.refresh(proposal)
    db_session.refresh(envelope)
    assert proposal.status == ProposalStatus.SIGNED
    assert proposal.signed_at is not None
    assert envelope.status == SignatureStatus.SIGNED
    last = _history(db_session, proposal.id)[-1]
    assert last.reason == "Clicksign: signed"
    assert last.from_status == ProposalStatus.PENDING_SIGNATURE

    audit = db_session.exec(select(AuditLog)).one()
    assert audit.action == "CLICKSIGN_WEBHOOK"
    assert audit.idempotency_key == idempotency_key("evt-1")
    assert audit.details["eventId"] == "evt-1"
    assert audit.details["eventType"] == "signed"
    assert audit.details["payload"]["envelope_id"] == "env-1"


def test_replayed_event_is_duplicated(service: ClicksignWebhookService, db_session: Session, pending: tuple) -> None:
    proposal, _ = pending
    payload = {"id": "evt-1", "event_type": "signed", "envelope_id": "env-1"}

    _deliver(service, payload)
    db_session.refresh(proposal)
    version = proposal.version
    for _ in range(3):
        assert _deliver(service, payload).as_dict() == {"ok": True, "eventId": "evt-1", "duplicated": True}

    db_session.refresh(proposal)
    assert proposal.version == version
    assert len(_history(db_session, proposal.id)) == 2
    assert len(db_session.exec(select(AuditLog)).all()) == 1


def test_concurrent_duplicate_loses_on_unique_key(
    service: ClicksignWebhookService, db_session: Session, pending: tuple, monkeypatch
) -> None:  # type: ignore[no-untyped-def]
    proposal, envelope = pending
    db_session.add(
        AuditLog(
            action="CLICKSIGN_WEBHOOK",
            entity_type="SignatureEnvelope",
            entity_id=str(envelope.id),
            idempotency_key=idempotency_key("evt-race"),
        )
    )
    db_session.commit()
    monkeypatch.setattr(service.audit, "find_by_idempotency_key", lambda key: None)

    result = _deliver(service, {"id": "evt-race", "event_type": "signed", "envelope_id": "env-1"})

    assert result.duplicated is True
    db_session.refresh(proposal)
    assert proposal.status == ProposalStatus.PENDING_SIGNATURE
    assert len(_history(db_session, proposal.id)) == 1


def test_refusal_rejects_proposal(service: ClicksignWebhookService, db_session: Session, pending: tuple) -> None:
    proposal, envelope = pending

    _deliver(service, {"event": {"id": "evt-2", "name": "refusal"}, "data": {"attributes": {"envelope_id": "env-1"}}})

    db_session.refresh(proposal)
    db_session.refresh(envelope)
    assert proposal.status == ProposalStatus.REJECTED
    assert proposal.rejected_at is not None
    assert envelope.status == SignatureStatus.CANCELED


def test_expired_event_expires_envelope(service: ClicksignWebhookService, db_session: Session, pending: tuple) -> None:
    proposal, envelope = pending

    _deliver(service, {"id": "evt-3", "type": "expired", "envelopeId": "env-1"})

    db_session.refresh(proposal)
    db_session.refresh(envelope)
    assert proposal.status == ProposalStatus.REJECTED
    assert envelope.status == SignatureStatus.EXPIRED


def test_unknown_event_is_audited_without_mutation(
    service: ClicksignWebhookService, db_session: Session, pending: tuple
) -> None:
    proposal, envelope = pending

    result = _deliver(service, {"id": "evt-4", "event_type": "add_signer", "envelope_id": "env-1"})

    assert result.ok and not result.duplicated
    db_session.refresh(proposal)
    db_session.refresh(envelope)
    assert proposal.status == ProposalStatus.PENDING_SIGNATURE
    assert envelope.status == SignatureStatus.SENT
    assert db_session.exec(select(AuditLog)).one().details["eventType"] == "add_signer"


def test_signed_event_after_terminal_only_updates_envelope(
    service: ClicksignWebhookService, db_session: Session, pending: tuple
) -> None:
    proposal, envelope = pending
    _deliver(service, {"id": "evt-5", "event_type": "refusal", "envelope_id": "env-1"})

    _deliver(service, {"id": "evt-6", "event_type": "signed", "envelope_id": "env-1"})

    db_session.refresh(proposal)
    db_session.refresh(envelope)
    assert proposal.status == ProposalStatus.REJECTED
    assert envelope.status == SignatureStatus.SIGNED
    audit = db_session.exec(select(AuditLog).where(AuditLog.idempotency_key == idempotency_key("evt-6"))).one()
    assert audit.details["note"] == "proposal status REJECTED unchanged"


@pytest.mark.parametrize(
    ("payload", "entity_id", "note"),
    [
        ({"id": "evt-7", "event_type": "signed"}, "unknown", "missing envelopeId or eventType"),
        ({"id": "evt-8", "envelope_id": "env-x"}, "env-x", "missing envelopeId or eventType"),
        ({"id": "evt-9", "event_type": "signed", "envelope_id": "env-x"}, "env-x", "envelope not found"),
    ],
)
def test_anomalies_are_audited_and_acknowledged(
    service: ClicksignWebhookService, db_session: Session, payload: dict, entity_id: str, note: str
) -> None:
    result = _deliver(service, payload)

    assert result.as_dict() == {"ok": True, "eventId": payload["id"]}
    audit = db_session.exec(select(AuditLog)).one()
    assert audit.entity_id == entity_id
    assert audit.details["note"] == note
    assert _deliver(service, payload).duplicated is True


def test_oversized_identifiers_fit_audit_columns(service: ClicksignWebhookService, db_session: Session) -> None:
    payload = {"id": "e" * 300, "event_type": "signed", "envelope_id": "v" * 300}

    assert _deliver(service, payload).as_dict() == {"ok": True, "eventId": "e" * 300}
    assert _deliver(service, payload).as_dict() == {"ok": True, "eventId": "e" * 300, "duplicated": True}

    audit = db_session.exec(select(AuditLog)).one()
    assert len(audit.idempotency_key) <= IDEMPOTENCY_KEY_MAX_LENGTH
    assert audit.idempotency_key == idempotency_key("e" * 300)
    assert audit.idempotency_key.startswith("CLICKSIGN_WEBHOOK:sha256:")
    assert len(audit.entity_id) <= ENTITY_ID_MAX_LENGTH
    assert audit.details["note"] == "envelope not found"


def test_short_identifiers_are_kept_verbatim() -> None:
    assert idempotency_key("evt-1") == "CLICKSIGN_WEBHOOK:evt-1"
    assert idempotency_key("e" * 142) == f"CLICKSIGN_WEBHOOK:{'e' * 142}"
    assert idempotency_key("e" * 143) != idempotency_key("e" * 144)
