"""Deterministic token estimation with CJK-aware heuristics."""

from __future__ import annotations


class TokenCounter:
    """Estimates token counts for budget management.

    Character-based only: the estimate must be reproducible for a given text,
    so no external tokenizer is consulted.
    """

    def __init__(self, chars_per_token: int = 4, cjk_chars_per_token: int = 2):
        self.chars_per_token = chars_per_token
        self.cjk_chars_per_token = cjk_chars_per_token

    def count(self, text: str) -> int:
        """Estimate tokens in a text string.

        English: ~4 characters per token
        CJK (Korean, Japanese, Chinese): ~2 characters per token
        """
        if not text:
            return 0
        cjk_count = sum(
            1
            for c in text
            if "\u4e00" <= c <= "\u9fff"  # CJK Unified
            or "\uac00" <= c <= "\ud7af"  # Korean Hangul
            or "\u3040" <= c <= "\u309f"  # Hiragana
            or "\u30a0" <= c <= "\u30ff"  # Katakana
        )
        non_cjk = len(text) - cjk_count
        return max(
            1,
            (non_cjk // self.chars_per_token)
            + (cjk_count // self.cjk_chars_per_token),
        )
