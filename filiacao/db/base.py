# noqa: F401 to ensure models are imported for metadata
from filiacao.models.admin import AdminUser
from filiacao.models.audit import AuditLog
from filiacao.models.document import DocumentFile, OcrResult
from filiacao.models.draft import Draft
from filiacao.models.notification import Notification
from filiacao.models.proposal import Address, Person, Proposal, StatusHistory
from filiacao.models.signature import SignatureEnvelope
from filiacao.models.social import SocialAccount

__all__ = [
    "AdminUser",
    "AuditLog",
    "DocumentFile",
    "OcrResult",
    "Draft",
    "Notification",
    "Address",
    "Person",
    "Proposal",
    "StatusHistory",
    "SignatureEnvelope",
    "SocialAccount",
]
