"""Tests for message framing."""

import pytest

from slot_relay.framing import (
    LengthPrefixedFraming,
    NulTerminatedFraming,
    get_framing,
)


class TestNulTerminatedFraming:
    def setup_method(self):
        self.framing = NulTerminatedFraming()

    def test_message_ends_at_first_zero_byte(self):
        """Bytes after an embedded zero are dropped."""
        assert self.framing.decode(b"hello\x00world\x00") == b"hello"

    def test_chunk_without_zero_is_taken_whole(self):
        assert self.framing.decode(b"no terminator here") == b"no terminator here"

    def test_encode_appends_single_terminator(self):
        assert self.framing.encode(b"OK") == b"OK\x00"
        assert len(self.framing.encode(b"OK")) == 3

    def test_wire_length_counts_terminator(self):
        assert self.framing.wire_length(b"hello") == 6
        assert self.framing.wire_length(b"") == 1

    def test_fit_leaves_room_for_terminator(self):
        assert self.framing.fit(b"01234567", 8) == b"0123456"
        assert self.framing.fit(b"short", 8) == b"short"
        assert self.framing.fit(b"x", 1) == b""

    @pytest.mark.parametrize("chunk", [b"\x00", b"\x00trailing", b"\x00\x00"])
    def test_empty_text_is_empty(self, chunk):
        assert self.framing.is_empty(self.framing.decode(chunk))

    def test_single_character_is_not_empty(self):
        assert not self.framing.is_empty(self.framing.decode(b"x\x00"))

    def test_split_frame_handles_coalesced_messages(self):
        payload, rest = self.framing.split_frame(b"OK\x00hello\x00par")
        assert payload == b"OK"
        payload, rest = self.framing.split_frame(rest)
        assert payload == b"hello"
        assert self.framing.split_frame(rest) == (None, b"par")


class TestLengthPrefixedFraming:
    def setup_method(self):
        self.framing = LengthPrefixedFraming()

    def test_encode_prefixes_big_endian_length(self):
        assert self.framing.encode(b"hello") == b"\x00\x00\x00\x05hello"

    def test_decode_reads_announced_length(self):
        assert self.framing.decode(b"\x00\x00\x00\x02hiEXTRA") == b"hi"

    def test_decode_short_payload_keeps_what_arrived(self):
        """No reassembly: a truncated read yields the bytes that came."""
        assert self.framing.decode(b"\x00\x00\x00\x10abc") == b"abc"

    def test_decode_short_header_is_empty(self):
        assert self.framing.decode(b"\x00\x01") == b""
        assert self.framing.is_empty(b"")

    def test_zero_bytes_inside_payload_are_kept(self):
        assert self.framing.decode(b"\x00\x00\x00\x03a\x00b") == b"a\x00b"

    def test_split_frame_waits_for_full_payload(self):
        assert self.framing.split_frame(b"\x00\x00\x00\x05hel") == (
            None,
            b"\x00\x00\x00\x05hel",
        )
        assert self.framing.split_frame(b"\x00\x00\x00\x02hi\x00") == (b"hi", b"\x00")


class TestGetFraming:
    def test_known_names(self):
        assert isinstance(get_framing("nul"), NulTerminatedFraming)
        assert isinstance(get_framing("length-prefixed"), LengthPrefixedFraming)

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown framing"):
            get_framing("json")
