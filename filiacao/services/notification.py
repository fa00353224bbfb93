from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from sqlmodel import Session

from filiacao.core.logging_setup import logger
from filiacao.models.notification import Notification, NotificationChannel, NotificationStatus
from filiacao.services.jobs import JobDispatchGateway


class NotificationTemplate(str, Enum):
    PROPOSAL_RECEIVED = "proposal_received"
    PROPOSAL_PENDING = "proposal_pending"
    PROPOSAL_REJECTED = "proposal_rejected"
    PROPOSAL_SIGNED = "proposal_signed"


@dataclass
class Recipient:
    email: str
    phone: str | None = None
    whatsapp_opt_in: bool = True


def redact_contact(value: str) -> str:
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(value) <= 4:
        return "***"
    return f"***{value[-4:]}"


class NotificationService:
    """Decide o que notificar e enfileira o envio; a entrega fica com os workers."""

    def __init__(self, session: Session, jobs: JobDispatchGateway) -> None:
        self.session = session
        self.jobs = jobs

    def notify_proposal_received(self, proposal_id: UUID, recipient: Recipient, *, protocol: str, deadline_days: int) -> list[Notification]:
        data = {"template": NotificationTemplate.PROPOSAL_RECEIVED.value, "protocol": protocol, "deadlineDays": deadline_days}
        return self._email_and_whatsapp(proposal_id, recipient, NotificationTemplate.PROPOSAL_RECEIVED, data)

    def notify_pending(
        self,
        proposal_id: UUID,
        recipient: Recipient,
        *,
        missing_items: Iterable[str],
        secure_link: str,
        message: str | None = None,
    ) -> list[Notification]:
        data: dict[str, Any] = {
            "template": NotificationTemplate.PROPOSAL_PENDING.value,
            "missingItems": list(missing_items),
            "secureLink": secure_link,
        }
        if message:
            data["message"] = message
        return self._email_and_whatsapp(proposal_id, recipient, NotificationTemplate.PROPOSAL_PENDING, data)

    def notify_rejected(self, proposal_id: UUID, recipient: Recipient, *, message: str) -> list[Notification]:
        data = {"template": NotificationTemplate.PROPOSAL_REJECTED.value, "message": message}
        return [self._enqueue(proposal_id, NotificationChannel.EMAIL, recipient.email, NotificationTemplate.PROPOSAL_REJECTED, data)]

    def notify_signed(self, proposal_id: UUID, recipient: Recipient, *, member_number: str) -> list[Notification]:
        data = {"template": NotificationTemplate.PROPOSAL_SIGNED.value, "memberNumber": member_number}
        return self._email_and_whatsapp(proposal_id, recipient, NotificationTemplate.PROPOSAL_SIGNED, data)

    def _email_and_whatsapp(
        self,
        proposal_id: UUID,
        recipient: Recipient,
        template: NotificationTemplate,
        data: dict[str, Any],
    ) -> list[Notification]:
        sent = [self._enqueue(proposal_id, NotificationChannel.EMAIL, recipient.email, template, data)]
        if recipient.phone:
            sent.append(
                self._enqueue(
                    proposal_id,
                    NotificationChannel.WHATSAPP,
                    recipient.phone,
                    template,
                    data,
                    opt_in=recipient.whatsapp_opt_in,
                )
            )
        return sent

    def _enqueue(
        self,
        proposal_id: UUID,
        channel: NotificationChannel,
        to: str,
        template: NotificationTemplate,
        data: dict[str, Any],
        *,
        opt_in: bool | None = None,
    ) -> Notification:
        notification = Notification(
            proposal_id=proposal_id,
            channel=channel,
            status=NotificationStatus.PENDING,
            template=template.value,
            payload_redacted={
                "to": redact_contact(to),
                "template": template.value,
                "data": data,
                "optIn": opt_in,
            },
        )
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)

        request_id = self.jobs.enqueue_notification(
            notification_id=notification.id,
            channel=channel.value,
            to=to,
            template=template.value,
            data=data,
            opt_in=opt_in,
        )
        notification.request_id = request_id
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)

        logger.info(
            "notification.queued",
            extra={"proposal_id": str(proposal_id), "channel": channel.value, "template": template.value},
        )
        return notification
