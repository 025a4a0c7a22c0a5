"""Декодирование hex-результатов eth_call / eth_blockNumber."""

from __future__ import annotations

import math
import re

from edgewave.services.rpc.errors import SourceDecodeFailed

_HEX_DIGITS = re.compile(r"[0-9a-fA-F]+")


def hex_to_int(value: object) -> int:
    """``"0x..."`` -> int. Всё, что не 0x-строка, считается ошибкой декодирования.

    После префикса допускаются только hex-цифры: знак, ``_``, пробелы и второй
    ``0x``, которые понимает ``int(..., 16)``, отбрасываются.
    """

    if not isinstance(value, str) or not value.startswith("0x"):
        raise SourceDecodeFailed(f"Ожидалась 0x-строка, получено {value!r}")
    digits = value[2:]
    if not _HEX_DIGITS.fullmatch(digits):
        raise SourceDecodeFailed(f"Невалидный hex {value!r}")
    return int(digits, 16)


def to_display_number(value: int, scale: int = 1) -> float:
    """Целочисленное деление на масштаб и перевод во float.

    Никогда не бросает: переполнение или не конечный результат дают 0.
    """

    try:
        number = float(value // scale)
    except (OverflowError, ZeroDivisionError):
        return 0.0
    return number if math.isfinite(number) else 0.0


__all__ = ["hex_to_int", "to_display_number"]
