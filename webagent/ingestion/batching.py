from typing import List, Sequence

from webagent.config import BATCHING
from webagent.ingestion.base import Chunk

MAX_BATCH_ITEMS = BATCHING["max_items"]
MAX_BATCH_TOKENS = BATCHING["max_tokens"]


def batch_tokens(batch: Sequence[Chunk]) -> int:
    return sum(chunk.tokens for chunk in batch)


def plan_batches(
    chunks: Sequence[Chunk],
    max_items: int = MAX_BATCH_ITEMS,
    max_tokens: int = MAX_BATCH_TOKENS,
) -> List[List[Chunk]]:
    """Group chunks into request batches, preserving order.

    A batch is closed when adding the next chunk would exceed ``max_items``
    or ``max_tokens``. A chunk that alone exceeds ``max_tokens`` still gets
    its own batch.
    """
    if max_items < 1:
        raise ValueError("max_items must be positive")

    batches: List[List[Chunk]] = []
    current: List[Chunk] = []
    current_tokens = 0

    for chunk in chunks:
        tokens = chunk.tokens
        if current and (len(current) >= max_items or current_tokens + tokens > max_tokens):
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(chunk)
        current_tokens += tokens

    if current:
        batches.append(current)
    return batches
