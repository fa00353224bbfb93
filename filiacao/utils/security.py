import hashlib
import secrets
from typing import Any

from jose import JWTError, jwt

from filiacao.core.config import Settings


def generate_token(num_bytes: int = 32) -> str:
    return secrets.token_hex(num_bytes)


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    """Valida o bearer token do painel administrativo (emitido pelo serviço de login)."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if "sub" not in payload:
        raise ValueError("Invalid token payload")
    return payload
