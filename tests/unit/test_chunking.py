from __future__ import annotations

import pytest

from state.save_manager import join_chunks, split_into_chunks


C = 7


@pytest.mark.parametrize("length", [0, 1, C - 1, C, C + 1, 3 * C, 3 * C + 1])
def test_split_then_join_is_exact(length):
    text = "".join(chr(ord("a") + i % 26) for i in range(length))
    chunks = split_into_chunks(text, C)

    assert join_chunks(chunks) == text
    assert len(chunks) == -(-length // C)
    assert all(len(c) == C for c in chunks[:-1])


def test_multibyte_text_splits_on_characters():
    text = "你好\U0001f3b2" * 5
    chunks = split_into_chunks(text, 4)

    assert join_chunks(chunks) == text
    assert all(len(c) <= 4 for c in chunks)


def test_split_rejects_non_positive_size():
    with pytest.raises(ValueError):
        split_into_chunks("abc", 0)
