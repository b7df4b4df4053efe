# Tests for SSE line decoding and consumer-side stream reassembly.

import json

import pytest

from aira_relay.utils.sse_reassembler import SSEReassembler, reassemble
from aira_relay.utils.upstream_event import parse_sse_line


def _data(content):
    return ("data: " + json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False) + "\n\n").encode()


async def _chunks(*parts):
    for part in parts:
        yield part


class TestParseSSELine:
    def test_content(self):
        event = parse_sse_line('data: {"choices":[{"delta":{"content":"Hi"}}]}')
        assert event.type == "content"
        assert event.content == "Hi"

    def test_done(self):
        assert parse_sse_line("data: [DONE]").type == "done"
        assert parse_sse_line("data:  [DONE]  \r").type == "done"

    @pytest.mark.parametrize("line", ["", "   ", ": keep-alive", "event: message", "id: 3", "data:{}"])
    def test_skipped_lines(self, line):
        assert parse_sse_line(line).type == "skip"

    def test_payload_without_content_is_skipped(self):
        assert parse_sse_line('data: {"choices":[{"delta":{"role":"assistant"}}]}').type == "skip"
        assert parse_sse_line('data: {"choices":[]}').type == "skip"
        assert parse_sse_line("data: [1, 2]").type == "skip"

    def test_invalid_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            parse_sse_line('data: {"choi')


class TestSSEReassembler:
    def test_hello_round_trip(self):
        updates = []
        r = SSEReassembler(on_update=updates.append)
        r.feed(_data("Hel"))
        r.feed(_data("lo"))
        r.feed(b"data: [DONE]\n\n")
        r.finish()
        assert r.content == "Hello"
        assert r.done is True
        assert updates == ["Hel", "Hello"]

    def test_line_split_across_chunks(self):
        r = SSEReassembler()
        assert r.feed(b'data: {"choi') == []
        assert r.feed(b'ces":[{"delta":{"content":"Hi"}}]}\n') == ["Hi"]
        assert r.content == "Hi"

    def test_multibyte_character_split_across_chunks(self):
        payload = _data("héllo 💖")
        cut = payload.index("💖".encode()) + 2
        r = SSEReassembler()
        r.feed(payload[:cut])
        r.feed(payload[cut:])
        assert r.content == "héllo 💖"

    def test_invalid_utf8_byte_is_replaced(self):
        reassembler = SSEReassembler()
        fragments = reassembler.feed(b'data: {"choices":[{"delta":{"content":"Hi \xff there"}}]}\n\n')
        assert fragments == ["Hi \ufffd there"]
        assert reassembler.content == "Hi \ufffd there"

    def test_crlf_and_comments_ignored(self):
        r = SSEReassembler()
        r.feed(b": OPENROUTER PROCESSING\r\n\r\n")
        r.feed(b'data: {"choices":[{"delta":{"content":"a"}}]}\r\n\r\n')
        assert r.content == "a"

    def test_feed_after_done_is_ignored(self):
        r = SSEReassembler()
        r.feed(b"data: [DONE]\n\n")
        assert r.feed(_data("late")) == []
        assert r.content == ""

    def test_unparseable_line_is_pushed_back(self):
        r = SSEReassembler()
        assert r.feed(b"data: {broken\n") == []
        # the broken line blocks the buffer until the final flush
        assert r.feed(_data("x")) == []
        assert r.finish() == ["x"]
        assert r.content == "x"

    def test_finish_flushes_unterminated_line(self):
        r = SSEReassembler()
        r.feed(b'data: {"choices":[{"delta":{"content":"tail"}}]}')
        assert r.content == ""
        assert r.finish() == ["tail"]
        assert r.content == "tail"

    def test_finish_ignores_partial_leftovers(self):
        r = SSEReassembler()
        r.feed(b'data: {"choices":[{"del')
        assert r.finish() == []
        assert r.content == ""

    def test_one_update_per_fragment(self):
        updates = []
        r = SSEReassembler(on_update=updates.append)
        r.feed(_data("a") + _data("") + _data("b") + _data("c"))
        assert updates == ["a", "ab", "abc"]


class TestReassemble:
    async def test_stops_reading_after_done(self):
        consumed = []

        async def stream():
            for part in (_data("Hel"), _data("lo"), b"data: [DONE]\n\n", _data("never")):
                consumed.append(part)
                yield part

        assert await reassemble(stream()) == "Hello"
        assert len(consumed) == 3

    async def test_byte_by_byte_delivery(self):
        body = _data("Hel") + _data("lo") + b"data: [DONE]\n\n"
        content = await reassemble(_chunks(*[body[i:i + 1] for i in range(len(body))]))
        assert content == "Hello"

    async def test_stream_without_done(self):
        assert await reassemble(_chunks(_data("a"), b'data: {"choices":[{"delta":{"content":"b"}}]}')) == "ab"
