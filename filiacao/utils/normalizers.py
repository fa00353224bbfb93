from __future__ import annotations

import re
from functools import lru_cache

from email_validator import EmailNotValidError, validate_email

_NON_DIGITS = re.compile(r"\D+")


def only_digits(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def normalize_cpf(value: str) -> str:
    return only_digits(value)


def is_valid_cpf(value: str) -> bool:
    """Valida os dígitos verificadores do CPF (11 dígitos, não repetidos)."""
    digits = only_digits(value)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False
    for size in (9, 10):
        total = sum(int(digits[i]) * (size + 1 - i) for i in range(size))
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != int(digits[size]):
            return False
    return True


def mask_cpf(value: str) -> str:
    digits = only_digits(value)
    if len(digits) != 11:
        return value
    return f"***.***.{digits[6:9]}-{digits[9:]}"


def normalize_cep(value: str) -> str:
    return only_digits(value)


def is_valid_cep(value: str) -> bool:
    return len(only_digits(value)) == 8


def normalize_phone(value: str, default_country: str = "55") -> str:
    """Normaliza telefone para E.164, assumindo Brasil quando não há DDI."""
    raw = (value or "").strip()
    digits = only_digits(raw)
    if not digits:
        raise ValueError("Telefone invalido")
    if raw.startswith("+"):
        candidate = digits
    elif len(digits) in (10, 11):
        candidate = f"{default_country}{digits}"
    else:
        candidate = digits
    if not 12 <= len(candidate) <= 15:
        raise ValueError("Telefone invalido")
    return f"+{candidate}"


@lru_cache(maxsize=256)
def _validate_format_only(candidate: str) -> str:
    """Normaliza endereços validando apenas sintaxe/IDNA."""
    info = validate_email(candidate, check_deliverability=False)
    return info.normalized


def normalize_email(value: str) -> str:
    candidate = (value or "").strip().lower()
    if not candidate:
        raise ValueError("E-mail e obrigatorio.")
    try:
        return _validate_format_only(candidate).lower()
    except EmailNotValidError as exc:  # pragma: no cover - library error text varies
        raise ValueError("Email invalido") from exc
