from __future__ import annotations

import re
from pathlib import Path

import pytest

from openassist.ingestion import ChunkerConfig, SentenceChunker, UnsupportedFileTypeError, extract_text, split_text

# 48 characters once the terminating period is stripped
SENTENCE = "Sentence number {:02d} talks about vector embeddings."


def _document(count: int = 48) -> str:
    return " ".join(SENTENCE.format(i) for i in range(count))


def test_document_of_2400_chars_splits_into_three_chunks_without_overlap():
    text = _document()
    assert len(text) == 48 * 50 - 1

    chunks = split_text(text, max_chunk_size=800, overlap_size=0)

    assert len(chunks) == 3
    assert all(len(chunk) <= 800 for chunk in chunks)


def test_default_overlap_seeds_each_chunk_with_trailing_words():
    chunks = SentenceChunker(ChunkerConfig(max_chunk_size=800, overlap_size=80)).split(_document())

    assert 3 <= len(chunks) <= 4
    assert all(len(chunk) <= 800 + 80 for chunk in chunks)
    for previous, current in zip(chunks, chunks[1:]):
        seed = " ".join(previous.split()[-16:])
        assert current.startswith(seed)


def test_every_sentence_is_kept_in_order():
    chunks = split_text(_document(), max_chunk_size=300, overlap_size=40)
    seen: list[int] = []
    for chunk in chunks:
        for number in re.findall(r"Sentence number (\d+)", chunk):
            if not seen or int(number) > seen[-1]:
                seen.append(int(number))
    assert seen == list(range(48))


def test_oversized_sentence_becomes_its_own_chunk():
    long_sentence = "word " * 300
    chunks = split_text(f"Short one. {long_sentence}. Another short one.", max_chunk_size=100, overlap_size=0)
    assert chunks[0] == "Short one"
    assert len(chunks[1]) > 100
    assert chunks[2] == "Another short one"


@pytest.mark.parametrize("text", ["", "   ", "...!?"])
def test_empty_input_yields_no_chunks(text: str):
    assert split_text(text) == []


def test_extract_text_normalizes_whitespace(tmp_path: Path):
    path = tmp_path / "notes.txt"
    path.write_text("Alpha beta\n\n\tgamma", encoding="utf-8")
    assert extract_text(path) == "Alpha beta gamma"


def test_extract_text_rejects_unsupported_suffix(tmp_path: Path):
    path = tmp_path / "image.png"
    path.write_bytes(b"\x89PNG")
    with pytest.raises(UnsupportedFileTypeError):
        extract_text(path)
