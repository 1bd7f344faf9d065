"""Tests for the data stream encoders and the incremental decoder."""

import pytest

from ledger_agents.data_stream import (
    DecoderState, ErrorEvent, StreamDecoder, TextChunk, ToolCallStart, ToolResultEvent,
    decode_stream, format_error, format_finish, format_text, format_tool_call,
    format_tool_result, parse_record,
)
from ledger_agents.errors import DecodeError


def sample_stream() -> str:
    return "".join([
        format_text("Registrerer kjøpet "),
        format_tool_call("call_1", "delegate_to_purchases_agent", {"task": "Book 450 kr"}),
        format_tool_result("call_1", {"success": True, "result": "Kjøp registrert ✓"}),
        format_text("Ferdig – kvittering lastet opp."),
        format_finish(),
    ])


def decode_in_chunks(data: bytes, size: int):
    decoder = StreamDecoder()
    for i in range(0, len(data), size):
        decoder.feed(data[i:i + size])
    return decoder.finish()


class TestChunkingInvariance:

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 16, 1000])
    def test_same_result_for_any_chunk_size(self, size):
        data = sample_stream().encode("utf-8")
        whole = decode_in_chunks(data, len(data))
        split = decode_in_chunks(data, size)

        assert split.events == whole.events
        assert split.full_text == "Registrerer kjøpet Ferdig – kvittering lastet opp."

    def test_multibyte_character_split_across_chunks(self):
        data = format_text("blåbær").encode("utf-8")
        cut = data.index("å".encode("utf-8")) + 1  # inside the two-byte sequence
        decoder = StreamDecoder()
        decoder.feed(data[:cut])
        decoder.feed(data[cut:])
        assert decoder.finish().full_text == "blåbær"

    def test_record_split_before_newline_is_counted_once(self):
        decoder = StreamDecoder()
        assert decoder.feed('0:"Hel') == []
        assert decoder.feed('lo"') == []
        events = decoder.feed("\n")
        assert events == [TextChunk("Hello")]
        assert decoder.finish().text_chunks == ["Hello"]

    def test_trailing_record_without_newline_is_flushed(self):
        decoder = StreamDecoder()
        decoder.feed('0:"a"\n0:"b"')
        assert decoder.finish().text_chunks == ["a", "b"]


class TestEvents:

    def test_event_order_and_counts(self):
        result = decode_in_chunks(sample_stream().encode("utf-8"), 5)

        assert len(result.text_chunks) == 2
        assert result.tool_calls == [
            ToolCallStart("call_1", "delegate_to_purchases_agent", {"task": "Book 450 kr"}),
        ]
        assert result.tool_results == [
            ToolResultEvent("call_1", {"success": True, "result": "Kjøp registrert ✓"}),
        ]
        assert result.errors == []
        assert [type(e) for e in result.events] == [TextChunk, ToolCallStart, ToolResultEvent, TextChunk]

    @pytest.mark.parametrize("calls,results,size", [
        (0, 0, 3),
        (2, 2, 1),
        (3, 1, 7),
        (1, 3, 4),
        (5, 5, 11),
    ])
    def test_every_record_becomes_one_event(self, calls, results, size):
        records = []
        expected = []
        for i in range(max(calls, results)):
            records.append(format_text(f"steg {i} – "))
            expected.append(TextChunk(f"steg {i} – "))
            if i < calls:
                records.append(format_tool_call(f"call_{i}", "delegate_to_sales_agent", {"task": f"oppgave {i}"}))
                expected.append(ToolCallStart(f"call_{i}", "delegate_to_sales_agent", {"task": f"oppgave {i}"}))
            if i < results:
                records.append(format_tool_result(f"call_{i}", {"success": True, "index": i}))
                expected.append(ToolResultEvent(f"call_{i}", {"success": True, "index": i}))
        records.append(format_text("ferdig"))
        expected.append(TextChunk("ferdig"))
        records.append(format_finish())

        result = decode_in_chunks("".join(records).encode("utf-8"), size)

        assert result.events == expected
        assert len(result.tool_calls) == calls
        assert len(result.tool_results) == results
        assert [c.id for c in result.tool_calls] == [f"call_{i}" for i in range(calls)]

    def test_delegation_call_and_called(self):
        result = decode_in_chunks(sample_stream().encode("utf-8"), 64)
        assert result.delegation_call().name == "delegate_to_purchases_agent"
        assert result.called("delegate_to_purchases_agent")
        assert not result.called("delegate_to_sales_agent")

    def test_missing_ids_default_to_unknown(self):
        event = parse_record('9:{"args": {"x": 1}}')
        assert event == ToolCallStart("unknown", "unknown", {"x": 1})
        assert parse_record('a:{"result": 3}') == ToolResultEvent("unknown", 3)

    def test_error_records(self):
        assert parse_record(format_error("boom").strip()) == ErrorEvent("boom")
        assert parse_record('3:"plain message"') == ErrorEvent("plain message")
        assert parse_record('e:{"finishReason": "error", "error": "step failed"}') == ErrorEvent("step failed")

    def test_finish_and_unknown_tags_carry_no_event(self):
        assert parse_record('e:{"finishReason": "stop"}') is None
        assert parse_record('d:{"finishReason": "stop"}') is None
        assert parse_record('8:[{"anything": true}]') is None

    def test_text_fallback_for_invalid_json(self):
        assert parse_record('0:"line one\\nline "two"') == TextChunk('line one\nline "two')


class TestMalformedRecords:

    def test_malformed_known_tag_raises(self):
        with pytest.raises(DecodeError):
            parse_record("9:{not json")
        with pytest.raises(DecodeError):
            parse_record("a:[1, 2]")
        with pytest.raises(DecodeError):
            parse_record("no separator here")

    def test_decoder_skips_malformed_and_continues(self):
        decoder = StreamDecoder()
        decoder.feed('0:"before"\n9:{broken\n0:"after"\n')
        result = decoder.finish()
        assert result.text_chunks == ["before", "after"]
        assert result.tool_calls == []

    def test_blank_lines_are_ignored(self):
        decoder = StreamDecoder()
        decoder.feed('\n\n0:"x"\r\n\n')
        assert decoder.finish().text_chunks == ["x"]


class TestDecoderState:

    def test_state_transitions(self):
        decoder = StreamDecoder()
        assert decoder.state is DecoderState.IDLE
        decoder.feed('0:"x"\n')
        assert decoder.state is DecoderState.STREAMING
        decoder.finish()
        assert decoder.state is DecoderState.COMPLETED
        with pytest.raises(DecodeError):
            decoder.feed('0:"y"\n')

    @pytest.mark.asyncio
    async def test_decode_stream(self):
        async def chunks():
            data = sample_stream().encode("utf-8")
            for i in range(0, len(data), 4):
                yield data[i:i + 4]

        result = await decode_stream(chunks())
        assert result.full_text == "Registrerer kjøpet Ferdig – kvittering lastet opp."
        assert len(result.tool_results) == 1

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        async def chunks():
            yield b'0:"partial"\n'
            raise ConnectionError("stream dropped")

        with pytest.raises(ConnectionError):
            await decode_stream(chunks())
