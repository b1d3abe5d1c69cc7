"""Utility helpers for estimating token counts."""

from __future__ import annotations

from typing import Iterable


def estimate_tokens(text: str) -> int:
    """Approximate tokens using 1 non-ASCII == 1 token, 4 ASCII == 1 token."""

    if not text:
        return 0

    ascii_chars = sum(1 for char in text if char.isascii())
    non_ascii_chars = len(text) - ascii_chars
    total = (ascii_chars + 3) // 4 + non_ascii_chars
    return max(total, 1)


def estimate_conversation_tokens(contents: Iterable[str], reply: str = "") -> int:
    """Estimate billable tokens when a provider reports no usage block."""

    return sum(estimate_tokens(content) for content in contents) + estimate_tokens(reply)


__all__ = ["estimate_conversation_tokens", "estimate_tokens"]
