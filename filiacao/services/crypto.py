"""Envelope criptográfico de PII (AES-256-GCM) e hashes de busca.

Formato do texto cifrado: base64(nonce[12] || tag[16] || ciphertext).
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
from enum import Enum

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from filiacao.core.config import Settings, get_settings
from filiacao.core.errors import FiliacaoError
from filiacao.utils.normalizers import only_digits

NONCE_SIZE = 12
TAG_SIZE = 16


class DecryptionError(FiliacaoError, ValueError):
    """Texto cifrado malformado ou adulterado."""


class SearchField(str, Enum):
    CPF = "cpf"
    EMAIL = "email"
    PHONE = "phone"


def normalize_for_search(field: SearchField, value: str) -> str:
    if field in (SearchField.CPF, SearchField.PHONE):
        return only_digits(value)
    return (value or "").strip().lower()


class CryptoService:
    def __init__(self, settings: Settings | None = None, *, key: bytes | None = None) -> None:
        self.settings = settings or get_settings()
        self._key = key
        if key is not None and len(key) != 32:
            raise ValueError("Encryption key must be 32 bytes")

    def _cipher(self) -> AESGCM:
        if self._key is None:
            self._key = self.settings.encryption_key_bytes()
        return AESGCM(self._key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._cipher().encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            raw = base64.b64decode(token or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Malformed ciphertext") from exc
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Malformed ciphertext")

        nonce = raw[:NONCE_SIZE]
        tag = raw[NONCE_SIZE : NONCE_SIZE + TAG_SIZE]
        ciphertext = raw[NONCE_SIZE + TAG_SIZE :]
        try:
            plaintext = self._cipher().decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptionError("Ciphertext authentication failed") from exc
        return plaintext.decode("utf-8")

    def decrypt_optional(self, token: str | None) -> str | None:
        if not token:
            return None
        return self.decrypt(token)

    @staticmethod
    def search_hash(field: SearchField, value: str) -> str:
        """Hash não reversível do valor normalizado, usado só em buscas por igualdade."""
        normalized = normalize_for_search(field, value)
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    def seal(self, field: SearchField, value: str) -> tuple[str, str]:
        """Retorna o par (cifrado, hash de busca) para colunas de PII."""
        normalized = normalize_for_search(field, value) if field is SearchField.EMAIL else value
        return self.encrypt(normalized), self.search_hash(field, value)
