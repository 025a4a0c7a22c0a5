"""Иерархия ошибок гейтвея."""

from __future__ import annotations

from typing import Mapping


class GatewayError(RuntimeError):
    """Базовое исключение EdgeWave."""


class MalformedRequest(GatewayError):
    """Клиент прислал невалидный JSON-RPC payload (ответ 400, без ретраев)."""

    def __init__(self, message: str, code: str = "INVALID_REQUEST") -> None:
        super().__init__(message)
        self.code = code


class AttemptFailed(GatewayError):
    """Одна попытка к одному эндпоинту провалилась. Наружу из гонки не выходит."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class AllEndpointsFailed(GatewayError):
    """Ни один эндпоинт не вернул успешный ответ."""

    def __init__(self, failures: Mapping[str, str]) -> None:
        self.failures = dict(failures)
        summary = "; ".join(f"{url}: {reason}" for url, reason in self.failures.items())
        super().__init__(f"Все эндпоинты упали ({len(self.failures)}): {summary}")


class SourceDecodeFailed(GatewayError):
    """Подрезультат одного источника отсутствует, содержит error или не декодируется."""


__all__ = [
    "AllEndpointsFailed",
    "AttemptFailed",
    "GatewayError",
    "MalformedRequest",
    "SourceDecodeFailed",
]
