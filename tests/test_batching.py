"""Tests for batch planning under item and token ceilings."""

from webagent.ingestion.base import Chunk, estimate_tokens
from webagent.ingestion.batching import batch_tokens, plan_batches


def _chunks(*lengths):
    return [Chunk(text=chr(ord("a") + i % 26) * n) for i, n in enumerate(lengths)]


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_empty_input_gives_no_batches():
    assert plan_batches([]) == []


def test_item_ceiling():
    chunks = _chunks(*([4] * 250))
    batches = plan_batches(chunks, max_items=100, max_tokens=200000)
    assert [len(b) for b in batches] == [100, 100, 50]


def test_token_ceiling():
    chunks = _chunks(400, 400, 400, 400)   # 100 tokens each
    batches = plan_batches(chunks, max_items=100, max_tokens=250)
    assert [len(b) for b in batches] == [2, 2]
    assert all(batch_tokens(b) <= 250 for b in batches)


def test_oversized_chunk_gets_its_own_batch():
    chunks = _chunks(40, 4000, 40)         # 10, 1000, 10 tokens
    batches = plan_batches(chunks, max_items=100, max_tokens=100)
    assert [len(b) for b in batches] == [1, 1, 1]
    assert batches[1][0] is chunks[1]


def test_order_preserved():
    chunks = _chunks(*[(i * 37) % 500 + 1 for i in range(300)])
    batches = plan_batches(chunks, max_items=7, max_tokens=300)
    flattened = [c for b in batches for c in b]
    assert flattened == chunks


def test_every_batch_within_ceilings():
    chunks = _chunks(*[(i * 91) % 2000 + 1 for i in range(500)])
    batches = plan_batches(chunks, max_items=13, max_tokens=1200)
    for batch in batches:
        assert len(batch) <= 13
        assert batch_tokens(batch) <= 1200 or len(batch) == 1
