from filiacao.utils.normalizers import (
    is_valid_cep,
    is_valid_cpf,
    mask_cpf,
    normalize_cep,
    normalize_cpf,
    normalize_email,
    normalize_phone,
)
from filiacao.utils.security import decode_token, generate_token, hash_token

__all__ = [
    "is_valid_cep",
    "is_valid_cpf",
    "mask_cpf",
    "normalize_cep",
    "normalize_cpf",
    "normalize_email",
    "normalize_phone",
    "decode_token",
    "generate_token",
    "hash_token",
]
