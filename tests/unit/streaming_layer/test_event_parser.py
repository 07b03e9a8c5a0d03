"""
Unit Tests for StreamEventParser and StreamEvent framing

Tests partial-read buffering, the [DONE] sentinel and tolerance of
non-conforming lines.
"""

from unittest.mock import MagicMock

import pytest

from possibility_engine.core.config.constants import StreamEventType
from possibility_engine.streaming.event_parser import StreamEventParser
from possibility_engine.streaming.models import StreamEvent


@pytest.mark.unit
class TestFrameParsing:
    def test_token_complete_done_scenario(self):
        parser = StreamEventParser()
        body = (
            'data: {"type":"token","data":{"id":"x","token":"Hi"}}\n\n'
            'data: {"type":"possibility_complete","data":{"id":"x"}}\n\n'
            "data: [DONE]\n\n"
        )

        frames = parser.feed(body)

        assert len(frames) == 3
        assert frames[0].event.type == StreamEventType.TOKEN
        assert frames[0].event.data == {"id": "x", "token": "Hi"}
        assert frames[1].event.type == StreamEventType.POSSIBILITY_COMPLETE
        assert frames[1].event.possibility_id == "x"
        assert frames[2].is_done

    def test_partial_line_is_buffered(self):
        parser = StreamEventParser()

        assert parser.feed('data: {"type":"token","data":{"id":"x","tok') == []
        assert parser.pending.startswith("data: ")

        frames = parser.feed('en":"Hi"}}\n')
        assert len(frames) == 1
        assert frames[0].event.data["token"] == "Hi"
        assert parser.pending == ""

    def test_chunk_split_inside_sentinel(self):
        parser = StreamEventParser()
        assert parser.feed("data: [DO") == []
        frames = parser.feed("NE]\n")
        assert frames[0].is_done

    def test_bytes_and_crlf(self):
        parser = StreamEventParser()
        frames = parser.feed(b'data: {"type":"token","data":{"id":"x","token":"a"}}\r\n')
        assert frames[0].event.data["token"] == "a"

    def test_multibyte_character_split_across_byte_chunks(self):
        parser = StreamEventParser()
        line = 'data: {"type":"token","data":{"id":"x","token":"café ☕"}}\n'.encode()
        split = line.index("☕".encode()) + 1

        assert parser.feed(line[:split]) == []
        frames = parser.feed(line[split:])

        assert frames[0].event.data["token"] == "café ☕"
        assert "�" not in frames[0].event.data["token"]

    def test_flush_parses_unterminated_tail(self):
        parser = StreamEventParser()
        parser.feed("data: [DONE]")
        assert parser.flush()[0].is_done
        assert parser.flush() == []


@pytest.mark.unit
class TestNonConformingLines:
    @pytest.mark.parametrize(
        "line",
        [
            "event: ping",
            "data: {not json}",
            'data: {"type":"bogus","data":{}}',
            'data: {"data":{"id":"x"}}',
        ],
    )
    def test_skipped_and_reported(self, line):
        on_parse_error = MagicMock()
        parser = StreamEventParser(stream_id="x", on_parse_error=on_parse_error)

        frames = parser.feed(f"{line}\ndata: [DONE]\n")

        assert len(frames) == 1
        assert frames[0].is_done
        assert parser.skipped_lines == 1
        on_parse_error.assert_called_once()

    def test_blank_lines_are_not_errors(self):
        parser = StreamEventParser()
        assert parser.feed("\n\n\r\n") == []
        assert parser.skipped_lines == 0


@pytest.mark.unit
class TestStreamEventFormat:
    def test_format(self):
        event = StreamEvent(type=StreamEventType.TOKEN, data={"id": "x", "token": "Hi"})
        assert event.format() == 'data: {"type":"token","data":{"id":"x","token":"Hi"}}\n\n'

    def test_done_frame(self):
        assert StreamEvent.done_frame() == "data: [DONE]\n\n"

    def test_formatted_event_parses_back(self):
        event = StreamEvent(type=StreamEventType.PROBABILITY, data={"id": "x", "probability": 0.5})
        frames = StreamEventParser().feed(event.format())
        assert frames[0].event == event

    def test_payload_is_copied(self):
        data = {"id": "x", "token": "a"}
        event = StreamEvent(type=StreamEventType.TOKEN, data=data)
        data["token"] = "changed"
        assert event.data["token"] == "a"
