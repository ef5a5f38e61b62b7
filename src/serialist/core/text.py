# src/serialist/core/text.py
"""Text helpers shared by the pipeline and the memory trackers."""

from __future__ import annotations

import re

_WORD_RE = re.compile(r"[\w']+")
_SENTENCE_SPLIT = re.compile(r"(?:(?<=[.!?…])|(?<=[.!?…][\"'”’)]))\s+")

_CLEANUPS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"```[\s\S]*?```"), ""),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"\*([^*\n]+)\*"), r"\1"),
    (re.compile(r"^(?:Scene|SCENE)\s*\d+\s*[:：]\s*", re.MULTILINE), ""),
    (re.compile(r"\bCliffhanger\b\s*[:：]?", re.IGNORECASE), ""),
    (re.compile(r"[ \t]+\n"), "\n"),
    (re.compile(r"\n{3,}"), "\n\n"),
)

# A phrase of 2-6 words repeated three or more times in a row, then a single word.
_PHRASE_LOOP = re.compile(r"(\S+(?:\s+\S+){1,5}?)(?:\s+\1){2,}")
_WORD_LOOP = re.compile(r"(\S{2,})(?:\s+\1){2,}")


def count_words(text: str) -> int:
    """Whitespace-delimited word count."""
    return len(text.split()) if text else 0


def clean_content(content: str) -> str:
    """Strip markdown and scaffolding from model prose and collapse repetition loops."""
    cleaned = content or ""
    for pattern, replacement in _CLEANUPS:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = _PHRASE_LOOP.sub(r"\1", cleaned)
    cleaned = _WORD_LOOP.sub(r"\1", cleaned)
    return cleaned.strip()


def smart_truncate(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars``, preferring a line break in the second half."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    newline = cut.rfind("\n")
    if newline > max_chars * 0.5:
        return cut[:newline].rstrip() + "\n..."
    return cut.rstrip() + "..."


def split_sentences(text: str) -> list[str]:
    """Split prose into sentences, keeping a trailing fragment if present."""
    return [p.strip() for p in _SENTENCE_SPLIT.split((text or "").strip()) if p.strip()]


def first_sentence(text: str) -> str:
    sentences = split_sentences(text)
    return sentences[0] if sentences else ""


def last_sentences(text: str, count: int = 2) -> str:
    sentences = split_sentences(text)
    return " ".join(sentences[-count:])


def words_of(text: str) -> set[str]:
    return {w.lower() for w in _WORD_RE.findall(text or "")}


def title_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the lowercase word sets of two titles."""
    wa, wb = words_of(a), words_of(b)
    if not wa or not wb:
        return 0.0
    return len(wa & wb) / len(wa | wb)


def most_similar_title(title: str, previous: list[str]) -> tuple[str | None, float]:
    best: str | None = None
    best_score = 0.0
    for candidate in previous:
        score = title_similarity(title, candidate)
        if score > best_score:
            best, best_score = candidate, score
    return best, best_score


def mentions(text: str, name: str) -> bool:
    """Whole-word, case-insensitive check that ``name`` occurs in ``text``."""
    if not name.strip():
        return False
    return re.search(rf"(?<!\w){re.escape(name.strip())}(?!\w)", text, re.IGNORECASE) is not None


__all__ = [
    "clean_content",
    "count_words",
    "first_sentence",
    "last_sentences",
    "mentions",
    "most_similar_title",
    "smart_truncate",
    "split_sentences",
    "title_similarity",
    "words_of",
]
