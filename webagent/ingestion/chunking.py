"""
Markdown chunking
=================
Splits a page's markdown into bounded, structure-aware chunks for embedding.

- Sections start at h1-h3 headers and are kept whole when they fit.
- Oversized sections fall back to blank-line paragraphs.
- ``safe_split`` hard-cuts long text without separating a surrogate pair.
"""

import re
from typing import List

from webagent.config import CHUNKING

DEFAULT_CHUNK_SIZE = CHUNKING["website"]["size"]

# Zero-width split in front of every "# ", "## " or "### " line
_SECTION_START = re.compile(r"^(?=#{1,3} )", re.M)
_PARAGRAPH_BREAK = re.compile(r"\n\n+")
_PARAGRAPH_SEP = "\n\n"


def _is_high_surrogate(ch: str) -> bool:
    return "\ud800" <= ch <= "\udbff"


def chunk_markdown(markdown: str, max_chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[str]:
    """Split markdown into chunks of at most ``max_chunk_size`` characters.

    A section that alone exceeds the limit is split by paragraphs; a single
    paragraph longer than the limit is emitted as-is (callers hard-split it).
    Whitespace-only chunks are dropped.
    """
    if not markdown:
        return []

    sections = [s for s in _SECTION_START.split(markdown) if s]

    chunks: List[str] = []
    current = ""

    def flush():
        nonlocal current
        text = current.strip()
        if text:
            chunks.append(text)
        current = ""

    for section in sections:
        if current and len(current) + len(section) > max_chunk_size:
            flush()

        if len(section) > max_chunk_size:
            for paragraph in _PARAGRAPH_BREAK.split(section):
                if not paragraph.strip():
                    continue
                if current and len(current) + len(paragraph) > max_chunk_size:
                    flush()
                current += paragraph + _PARAGRAPH_SEP
        else:
            current += section

    flush()
    return chunks


def safe_split(text: str, max_length: int) -> List[str]:
    """Cut ``text`` into slices of at most ``max_length`` characters.

    A cut that would leave a high surrogate at the end of a slice moves back
    by one so the pair stays together. ``"".join(result) == text`` always.
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")

    slices: List[str] = []
    start = 0
    while start < len(text):
        end = start + max_length
        if end >= len(text):
            slices.append(text[start:])
            break
        if _is_high_surrogate(text[end - 1]) and end - 1 > start:
            end -= 1
        slices.append(text[start:end])
        start = end
    return slices
