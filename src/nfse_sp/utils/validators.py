from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation

_NON_DIGITS = re.compile(r"\D")

MAX_MOTIVO_CANCELAMENTO = 255


def only_digits(value: str | int | None) -> str:
    """Strip formatting (dots, slashes, dashes) from CNPJ/CPF/CEP values."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def validate_cnpj(value: str) -> str:
    """Return the CNPJ as 14 digits. Raises ValueError otherwise."""
    digits = only_digits(value)
    if len(digits) != 14:
        raise ValueError(f"CNPJ inválido: '{value}'. Deve ter 14 dígitos.")
    return digits


def validate_cpf(value: str) -> str:
    """Return the CPF as 11 digits. Raises ValueError otherwise."""
    digits = only_digits(value)
    if len(digits) != 11:
        raise ValueError(f"CPF inválido: '{value}'. Deve ter 11 dígitos.")
    return digits


def validate_monetary(value: str | int | float | Decimal) -> str:
    """Validate a non-negative monetary value and format it with 2 decimal places."""
    try:
        d = Decimal(str(value))
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Valor numérico inválido: '{value}'") from None
    if d < 0:
        raise ValueError(f"Valor dos serviços não pode ser negativo: '{value}'")
    return f"{d:.2f}"


def validate_aliquota(value: str | int | float | Decimal) -> str:
    """Validate an ISS rate between 0 and 1 (0.05 = 5%) and format it with 4 decimal places."""
    try:
        d = Decimal(str(value))
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Alíquota inválida: '{value}'") from None
    if d < 0 or d > 1:
        raise ValueError("Alíquota deve ser número entre 0 e 1")
    return f"{d:.4f}"


def validate_datetime(value: str) -> str:
    """Validate an ISO 8601 date or datetime string. Returns it unchanged."""
    try:
        datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"Data de emissão inválida: '{value}'. Use ISO 8601.") from None
    return value


def validate_choice(value: int | str, allowed: tuple[int, ...], label: str) -> int:
    """Coerce *value* to int and check it is one of *allowed*."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = None
    if number not in allowed:
        options = " ou ".join(str(a) for a in allowed)
        raise ValueError(f"{label} deve ser {options}")
    return number


def validate_motivo(value: str) -> str:
    """Validate a cancellation reason: required, at most 255 characters."""
    if not value or not value.strip():
        raise ValueError("Motivo do cancelamento é obrigatório")
    if len(value) > MAX_MOTIVO_CANCELAMENTO:
        raise ValueError(
            f"Motivo do cancelamento não pode exceder {MAX_MOTIVO_CANCELAMENTO} caracteres"
        )
    return value
