from filiacao.services.audit import AuditService
from filiacao.services.crypto import CryptoService
from filiacao.services.draft import DraftService
from filiacao.services.jobs import JobDispatchGateway
from filiacao.services.notification import NotificationService
from filiacao.services.proposal import ProposalService
from filiacao.services.signature_webhook import ClicksignWebhookService
from filiacao.services.social import SocialOAuthService
from filiacao.services.state_machine import ProposalStateMachine
from filiacao.services.triage import ProposalTriageService

__all__ = [
    "AuditService",
    "CryptoService",
    "DraftService",
    "JobDispatchGateway",
    "NotificationService",
    "ProposalService",
    "ClicksignWebhookService",
    "SocialOAuthService",
    "ProposalStateMachine",
    "ProposalTriageService",
]
