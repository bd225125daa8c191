"""Tests for ChunkDecoder: frames must not depend on network read boundaries."""

from __future__ import annotations

import json

import pytest

from toolstream.llm.adapters.ollama import OllamaAdapter
from toolstream.llm.adapters.openai import OpenAICompatibleAdapter
from toolstream.llm.decoder import ChunkDecoder


def _sse_body() -> bytes:
    frames = [
        {"choices": [{"delta": {"content": "héllo wörld ✓ "}}]},
        {"choices": [{"delta": {"content": "日本語 🎉"}}]},
        {"choices": [{"delta": {}, "finish_reason": "stop"}]},
    ]
    text = "".join(f"data: {json.dumps(f, ensure_ascii=False)}\n\n" for f in frames)
    return (text + "data: [DONE]\n\n").encode("utf-8")


def _decode(pieces: list[bytes]) -> list[str]:
    decoder = ChunkDecoder()
    frames: list[str] = []
    for piece in pieces:
        frames.extend(decoder.feed(piece))
    frames.extend(decoder.flush())
    return frames


def _split(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


BODY = _sse_body()


class TestChunkBoundaries:
    def test_single_read(self):
        frames = _decode([BODY])
        assert len(frames) == 4
        assert frames[-1] == "data: [DONE]"

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 64])
    def test_fixed_size_reads(self, size: int):
        assert _decode(_split(BODY, size)) == _decode([BODY])

    def test_every_two_way_split(self):
        expected = _decode([BODY])
        for i in range(len(BODY) + 1):
            assert _decode([BODY[:i], BODY[i:]]) == expected

    def test_split_inside_multibyte_character(self):
        idx = BODY.index("✓".encode("utf-8")) + 1
        frames = _decode([BODY[:idx], BODY[idx:]])
        assert "✓" in frames[0]
        assert "\ufffd" not in "".join(frames)

    def test_extracted_text_is_identical(self):
        adapter = OpenAICompatibleAdapter()

        def text_of(frames: list[str]) -> str:
            return "".join(t for t in map(adapter.parse_chunk, frames) if t)

        expected = text_of(_decode([BODY]))
        assert expected == "héllo wörld ✓ 日本語 🎉"
        for size in (1, 4, 9):
            assert text_of(_decode(_split(BODY, size))) == expected


class TestLineHandling:
    def test_trailing_partial_line_is_buffered(self):
        decoder = ChunkDecoder()
        assert decoder.feed(b'{"a": 1}\n{"b"') == ['{"a": 1}']
        assert decoder.feed(b": 2}") == []
        assert decoder.flush() == ['{"b": 2}']

    def test_crlf_and_blank_lines(self):
        decoder = ChunkDecoder()
        assert decoder.feed(b"data: x\r\n\r\n\r\ndata: y\r\n") == ["data: x", "data: y"]

    def test_flush_empty(self):
        assert ChunkDecoder().flush() == []

    def test_ndjson_frames(self):
        adapter = OllamaAdapter()
        body = (
            b'{"message": {"content": "Hel"}, "done": false}\n'
            b'{"message": {"content": "lo"}, "done": false}\n'
            b'{"message": {"content": ""}, "done": true, "eval_count": 2}'
        )
        frames = _decode(_split(body, 5))
        assert len(frames) == 3
        assert "".join(t for t in map(adapter.parse_chunk, frames) if t) == "Hello"
