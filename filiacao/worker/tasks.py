"""Tarefas periódicas executadas pelo worker."""
from dataclasses import asdict

from sqlmodel import Session

from filiacao.core.logging_setup import logger
from filiacao.db import session as db_session
from filiacao.services.draft import DraftService
from filiacao.services.triage import ProposalTriageService
from filiacao.worker.celery_app import celery_app, settings


@celery_app.task(name="filiacao.triage")
def run_triage() -> dict:
    with Session(db_session.engine) as session:
        report = ProposalTriageService(session, settings).run()
    return asdict(report)


@celery_app.task(name="filiacao.drafts.cleanup")
def cleanup_drafts() -> dict:
    with Session(db_session.engine) as session:
        result = DraftService(session, settings=settings).cleanup_expired()
    logger.info("worker.drafts_cleanup", extra={"removed_drafts": result["drafts"]})
    return result
