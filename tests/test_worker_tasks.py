from datetime import timedelta

from sqlmodel import Session, select

from filiacao.models.base import utcnow
from filiacao.models.document import DocumentFile, DocumentType
from filiacao.models.draft import Draft
from filiacao.services.crypto import CryptoService
from filiacao.worker.celery_app import celery_app
from filiacao.worker.tasks import cleanup_drafts, run_triage
from tests.conftest import create_proposal


def test_task_routes_and_schedule() -> None:
    routes = celery_app.conf.task_routes
    assert routes["ocr.process"] == {"queue": "ocr-jobs"}
    assert routes["signature.create"] == {"queue": "signature-jobs"}
    assert routes["notification.send"] == {"queue": "notification-jobs"}
    assert routes["filiacao.triage"] == {"queue": "maintenance"}

    schedule = celery_app.conf.beat_schedule
    assert schedule["proposal-triage"]["task"] == "filiacao.triage"
    assert schedule["drafts-cleanup"]["task"] == "filiacao.drafts.cleanup"


def test_run_triage_uses_current_engine(db_session: Session, crypto: CryptoService) -> None:
    proposal = create_proposal(db_session, crypto, submitted_days_ago=30)

    result = run_triage()

    assert result["recalculated"] == 1
    assert result["breached"] == 1
    db_session.refresh(proposal)
    assert proposal.sla_breached_at is not None


def test_cleanup_drafts_removes_expired(db_session: Session) -> None:
    expired = Draft(token_hash="a" * 64, expires_at=utcnow() - timedelta(hours=1))
    alive = Draft(token_hash="b" * 64, expires_at=utcnow() + timedelta(days=1))
    db_session.add(expired)
    db_session.add(alive)
    db_session.flush()
    db_session.add(
        DocumentFile(
            draft_id=expired.id,
            type=DocumentType.RG_FRENTE,
            storage_key="drafts/rg.jpg",
            file_name="rg.jpg",
            content_type="image/jpeg",
        )
    )
    db_session.commit()

    result = cleanup_drafts()

    assert result == {"drafts": 1, "documents": 1, "orphans": 0}
    remaining = db_session.exec(select(Draft)).all()
    assert [draft.token_hash for draft in remaining] == ["b" * 64]
    assert db_session.exec(select(DocumentFile)).all() == []
