"""State assinado do fluxo OAuth: base64url(JSON) + "." + HMAC-SHA256 em hex."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any

STATE_VERSION = 1


@dataclass(frozen=True)
class OAuthState:
    provider: str
    proposal_id: str
    issued_at: int  # epoch em milissegundos
    v: int = STATE_VERSION

    def to_payload(self) -> dict[str, Any]:
        return {"v": self.v, "provider": self.provider, "proposalId": self.proposal_id, "issuedAt": self.issued_at}


def now_ms() -> int:
    return int(time.time() * 1000)


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _signature(secret: str, encoded: str) -> str:
    return hmac.new(secret.encode("utf-8"), encoded.encode("ascii"), hashlib.sha256).hexdigest()


def sign_state(state: OAuthState, secret: str) -> str:
    encoded = _b64url_encode(json.dumps(state.to_payload(), separators=(",", ":")).encode("utf-8"))
    return f"{encoded}.{_signature(secret, encoded)}"


def verify_state(value: str, secret: str, *, ttl_minutes: int, now: int | None = None) -> OAuthState | None:
    """Devolve o state decodificado ou None se a assinatura, o formato ou o prazo falharem."""
    encoded, _, signature = (value or "").partition(".")
    if not encoded or not signature:
        return None
    if not encoded.isascii() or not signature.isascii():
        return None
    if not hmac.compare_digest(signature.encode("ascii", "ignore"), _signature(secret, encoded).encode("ascii")):
        return None

    try:
        payload = json.loads(_b64url_decode(encoded))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(payload, dict) or payload.get("v") != STATE_VERSION:
        return None

    try:
        state = OAuthState(
            provider=str(payload["provider"]),
            proposal_id=str(payload["proposalId"]),
            issued_at=int(payload["issuedAt"]),
        )
    except (KeyError, TypeError, ValueError):
        return None

    current = now if now is not None else now_ms()
    if current > state.issued_at + ttl_minutes * 60 * 1000:
        return None
    return state
