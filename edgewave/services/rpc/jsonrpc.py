"""Минимальные JSON-RPC 2.0 конверты: валидация запроса и классификация ответа."""

from __future__ import annotations

import json
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from .errors import MalformedRequest

JsonRpcId = Union[int, str, None]


class JsonRpcCall(BaseModel):
    """Один вызов внутри запроса (лишние поля пропускаем как есть)."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: str = "2.0"
    id: JsonRpcId = None
    method: str
    params: Union[list[Any], dict[str, Any], None] = None


_request_adapter = TypeAdapter(Union[JsonRpcCall, list[JsonRpcCall]])


def parse_request_body(body: bytes | str) -> Any:
    """Разбирает тело входящего /rpc запроса и проверяет форму конверта.

    Возвращает исходный JSON (dict или list) без нормализации,
    чтобы апстримы получили ровно то, что прислал клиент.
    """

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedRequest("Тело запроса не является JSON", code="INVALID_JSON") from exc
    validate_request(payload)
    return payload


def validate_request(payload: Any) -> None:
    if isinstance(payload, list) and not payload:
        raise MalformedRequest("Пустой batch")
    if not isinstance(payload, (dict, list)):
        raise MalformedRequest("Ожидается объект или массив JSON-RPC")
    try:
        _request_adapter.validate_python(payload)
    except ValidationError as exc:
        raise MalformedRequest(f"Невалидный JSON-RPC запрос: {exc.error_count()} ошибок") from exc


def first_request_id(payload: Any) -> JsonRpcId:
    """id для конверта ошибки: у batch берём id первого элемента."""

    if isinstance(payload, list):
        head = payload[0] if payload else None
        return head.get("id") if isinstance(head, dict) else None
    if isinstance(payload, dict):
        return payload.get("id")
    return None


def error_envelope(request_id: JsonRpcId, message: str, code: int = -32000) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def has_rpc_error(decoded: Any) -> bool:
    """True, если конверт (или любой элемент batch-ответа) содержит поле error."""

    if isinstance(decoded, list):
        return any(isinstance(item, dict) and "error" in item for item in decoded)
    return isinstance(decoded, dict) and "error" in decoded


def dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"))


__all__ = [
    "JsonRpcCall",
    "JsonRpcId",
    "dumps",
    "error_envelope",
    "first_request_id",
    "has_rpc_error",
    "parse_request_body",
    "validate_request",
]
