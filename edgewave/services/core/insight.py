"""Текстовый отчёт по снапшоту для POST /insight.

Генератор детерминированный и не ходит во внешние модели: вопрос пользователя
только выбирает тему, цифры берутся из текущего снапшота.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, AsyncIterator, Iterable

from edgewave.services.defi.snapshot import Snapshot

DEFAULT_QUESTION = "Give me an overview"
MAX_QUESTION_CHARS = 2000

_TOPIC_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("uniswap_v3", ("uniswap", "uni")),
    ("aave", ("aave",)),
    ("compound", ("compound",)),
    ("tvl", ("tvl", "locked")),
    ("volume", ("volume",)),
)


def extract_question(messages: Any) -> str:
    """Текст последнего сообщения с ``role == "user"`` (обрезан до 2000 символов)."""

    if not isinstance(messages, list):
        return ""
    for message in reversed(messages):
        if isinstance(message, dict) and message.get("role") == "user":
            return _message_text(message)[:MAX_QUESTION_CHARS]
    return ""


def _message_text(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    parts = message.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(
        str(part.get("text") or "")
        for part in parts
        if isinstance(part, dict) and part.get("type") == "text"
    )


def pick_topic(question: str) -> str:
    lowered = question.lower()
    for topic, keywords in _TOPIC_KEYWORDS:
        if any(word in lowered for word in keywords):
            return topic
    return "overview"


def render_report(question: str, snapshot: Snapshot, layer: str | None = None) -> str:
    question = (question or DEFAULT_QUESTION)[:MAX_QUESTION_CHARS]
    topic = pick_topic(question)
    ranked = sorted(
        snapshot.protocols.items(), key=lambda item: item[1].tvl_usd_approx, reverse=True
    )

    lines = ["# EdgeWave: on-chain insight", ""]
    lines.append(f"**Question**: {question}")
    lines.append(f"**Updated**: {snapshot.updated_at.isoformat()}")
    if snapshot.block_number:
        lines.append(f"**Block**: {snapshot.block_number}")
    if layer:
        lines.append(f"**Cache layer**: {layer}")
    lines += ["", "## Snapshot"]
    for pid, metrics in ranked:
        lines.append(
            f"- **{pid}**: TVL≈${metrics.tvl_usd_approx:.2f} | "
            f"volume proxy≈${metrics.volume_usd_proxy:.2f} | {metrics.health}"
        )

    lines += ["", "## Reading"]
    if topic == "overview":
        leader = ranked[0][0] if ranked else "unknown"
        lines.append(f"- Current TVL leader: **{leader}** (proxy signal, compare trends only).")
        lines.append(
            "- The volume figure is a momentum proxy built from the delta between "
            "consecutive samples, not traded volume."
        )
    elif topic == "tvl":
        lines.append(
            "- TVL≈ is a proxy derived from a few read-only on-chain calls; "
            "compare the trend rather than absolute dollar values."
        )
    elif topic == "volume":
        lines.append(
            "- The volume proxy is |Δtvl| × weight between refreshes and only shows relative activity."
        )
    else:
        lines.append(f"- Focus: **{topic}**")
        metrics = snapshot.protocols.get(topic)
        if metrics is None:
            lines.append("  - No matching protocol in the current dataset.")
        else:
            lines.append(f"  - TVL≈${metrics.tvl_usd_approx:.2f}")
            lines.append(f"  - volume proxy≈${metrics.volume_usd_proxy:.2f}")
            lines.append(f"  - health: {metrics.health} ({metrics.note})")

    degraded = snapshot.degraded_ids()
    lines += ["", "## Ask next"]
    if degraded:
        lines.append(f"- \"Why are {', '.join(degraded)} degraded?\"")
    lines.append("- \"Compare Uniswap and Compound momentum over the last minute\"")
    lines.append("")
    return "\n".join(lines)


def split_lines(text: str) -> list[str]:
    """Режет текст на строки, сохраняя переводы строк отдельными чанками."""

    return [chunk for chunk in re.split(r"(\n)", text) if chunk]


async def stream_lines(text: str, delay: float = 0.02) -> AsyncIterator[str]:
    chunks: Iterable[str] = split_lines(text)
    for chunk in chunks:
        yield chunk
        if delay > 0:
            await asyncio.sleep(delay)


__all__ = [
    "DEFAULT_QUESTION",
    "MAX_QUESTION_CHARS",
    "extract_question",
    "pick_topic",
    "render_report",
    "split_lines",
    "stream_lines",
]
