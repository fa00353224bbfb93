from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol
from uuid import UUID, uuid4

from filiacao.core.config import Settings, get_settings
from filiacao.core.logging_setup import logger


class JobKind(str, Enum):
    OCR = "ocr.process"
    PDF = "pdf.generate"
    SIGNATURE = "signature.create"
    NOTIFICATION = "notification.send"


JOB_QUEUES: dict[JobKind, str] = {
    JobKind.OCR: "ocr-jobs",
    JobKind.PDF: "signature-jobs",
    JobKind.SIGNATURE: "signature-jobs",
    JobKind.NOTIFICATION: "notification-jobs",
}


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff_seconds: int = 30

    def delay_for(self, attempt: int) -> int:
        """Atraso exponencial (em segundos) antes da tentativa `attempt` (1-based)."""
        return self.backoff_seconds * (2 ** max(attempt - 1, 0))

    def as_header(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "backoff": {"type": "exponential", "delay": self.backoff_seconds},
        }


class JobQueue(Protocol):
    def send(
        self,
        name: str,
        payload: dict[str, Any],
        *,
        queue: str,
        request_id: str,
        retry_policy: RetryPolicy,
    ) -> None:
        ...


class CeleryJobQueue:
    """Publica jobs no broker do Celery; a execução fica a cargo dos workers."""

    def __init__(self, app=None) -> None:  # type: ignore[no-untyped-def]
        if app is None:
            from filiacao.worker.celery_app import celery_app

            app = celery_app
        self.app = app

    def send(
        self,
        name: str,
        payload: dict[str, Any],
        *,
        queue: str,
        request_id: str,
        retry_policy: RetryPolicy,
    ) -> None:
        self.app.send_task(
            name,
            kwargs={"payload": payload},
            task_id=request_id,
            queue=queue,
            headers={"request_id": request_id, "retry_policy": retry_policy.as_header()},
            retry=True,
            retry_policy={"max_retries": retry_policy.attempts, "interval_start": 0, "interval_step": 1, "interval_max": 5},
            ignore_result=True,
        )


class JobDispatchGateway:
    """Traduz uma intenção tipada em um job durável, com retentativa e rastreável por requestId."""

    def __init__(self, queue: JobQueue | None = None, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.queue = queue or CeleryJobQueue()
        self.retry_policy = RetryPolicy(
            attempts=max(self.settings.job_attempts, 1),
            backoff_seconds=max(self.settings.job_backoff_seconds, 1),
        )

    def enqueue(self, kind: JobKind, payload: dict[str, Any], *, request_id: str | None = None) -> str:
        request_id = request_id or str(uuid4())
        body = {**payload, "requestId": request_id}
        self.queue.send(
            kind.value,
            body,
            queue=JOB_QUEUES[kind],
            request_id=request_id,
            retry_policy=self.retry_policy,
        )
        logger.info("job.enqueued", extra={"job": kind.value, "request_id": request_id})
        return request_id

    def enqueue_ocr(self, *, proposal_id: UUID, document_file_id: UUID, request_id: str | None = None) -> str:
        return self.enqueue(
            JobKind.OCR,
            {"proposalId": str(proposal_id), "documentFileId": str(document_file_id)},
            request_id=request_id,
        )

    def enqueue_pdf(
        self,
        *,
        proposal_id: UUID,
        protocol: str,
        candidate: dict[str, Any],
        request_id: str | None = None,
    ) -> str:
        return self.enqueue(
            JobKind.PDF,
            {"proposalId": str(proposal_id), "protocol": protocol, "candidate": candidate},
            request_id=request_id,
        )

    def enqueue_signature(
        self,
        *,
        proposal_id: UUID,
        protocol: str,
        document_file_id: UUID,
        candidate: dict[str, Any],
        request_id: str | None = None,
    ) -> str:
        return self.enqueue(
            JobKind.SIGNATURE,
            {
                "proposalId": str(proposal_id),
                "protocol": protocol,
                "documentFileId": str(document_file_id),
                "candidate": candidate,
            },
            request_id=request_id,
        )

    def enqueue_notification(
        self,
        *,
        notification_id: UUID,
        channel: str,
        to: str,
        template: str,
        data: dict[str, Any],
        opt_in: bool | None = None,
        request_id: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "notificationId": str(notification_id),
            "channel": channel,
            "to": to,
            "template": template,
            "data": data,
        }
        if opt_in is not None:
            payload["optIn"] = opt_in
        return self.enqueue(JobKind.NOTIFICATION, payload, request_id=request_id)
