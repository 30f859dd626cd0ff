"""
Tests for reading records from a stream and composing them back into bytes.
"""

import io

import pydantic
import pytest

import marc21
from marc21 import DirectoryEntry, Leader, Record


def read(buffer):
    return marc21.read_next_record(io.BytesIO(buffer))


class TestReadNextRecord:

    def test_sample_lengths_agree(self, sample_record, sample_directory, sample_field_data):
        """The leader and directory of the sample describe its actual bytes."""
        assert int(sample_record[0:5]) == len(sample_record)
        assert int(sample_record[12:17]) == len(sample_record) - len(sample_field_data)
        assert sum(e.field_length for e in sample_directory) + 1 == len(sample_field_data)

    def test_decode_sample(self, sample_record):
        record = read(sample_record)
        assert record.tags() == ["001", "245"]
        assert record.fields == [b"ocm123", b"10\x1faTitle\x1fbsub"]
        assert record.leader.record_length == 72
        assert record.leader.base_address_of_data == 49

    def test_directory_keeps_field_starts(self, sample_record):
        record = read(sample_record)
        assert [e.field_start for e in record.directory] == [0, 7]

    def test_empty_stream_is_eof(self):
        assert read(b"") is None

    def test_short_leader(self):
        with pytest.raises(marc21.ShortLeaderReadError) as excinfo:
            read(b"0007")
        assert isinstance(excinfo.value, marc21.ShortReadError)
        assert str(excinfo.value)

    def test_malformed_leader_propagates(self, sample_record):
        with pytest.raises(marc21.MalformedError):
            read(b"abcde" + sample_record[5:])

    @pytest.mark.parametrize("base", [b"00024", b"00010", b"00073"])
    def test_impossible_base_address(self, sample_record, base):
        with pytest.raises(marc21.MalformedError):
            read(sample_record[:12] + base + sample_record[17:])

    def test_short_directory(self, sample_record):
        with pytest.raises(marc21.ShortDirectoryReadError):
            read(sample_record[:40])

    def test_unterminated_directory(self, sample_record):
        with pytest.raises(marc21.MissingFieldTerminatorError):
            read(sample_record[:48] + b"X" + sample_record[49:])

    def test_misaligned_directory(self, sample_record):
        # base address 50 leaves 25 directory bytes before the terminator
        record = sample_record[:12] + b"00050" + sample_record[17:48] + b"0\x1e" + sample_record[49:]
        record = b"00073" + record[5:]
        with pytest.raises(marc21.MalformedError):
            read(record)

    def test_short_field_data(self, sample_record):
        with pytest.raises(marc21.ShortFieldReadError) as excinfo:
            read(sample_record[:60])
        assert "expected 23 bytes, got 11 bytes" in str(excinfo.value)

    def test_field_errors_propagate(self, sample_record):
        with pytest.raises(marc21.MissingRecordTerminatorError):
            read(sample_record[:-1] + b"\x1e")

    def test_reads_one_record_at_a_time(self, sample_record):
        stream = io.BytesIO(sample_record * 2)
        assert marc21.read_next_record(stream) is not None
        assert stream.tell() == len(sample_record)
        assert marc21.read_next_record(stream) is not None
        assert marc21.read_next_record(stream) is None

    def test_read_records(self, sample_record):
        records = list(marc21.read_records(io.BytesIO(sample_record * 3)))
        assert len(records) == 3
        assert all(r.control_number == b"ocm123" for r in records)

    def test_records_are_independent(self, sample_record):
        first, second = marc21.read_records(io.BytesIO(sample_record * 2))
        first.leader[5] = "d"
        assert second.leader[5] == "n"


class TestCompose:

    def test_round_trip(self, sample_record):
        record = read(sample_record)
        assert marc21.compose(record.directory, record.fields, record.leader) == sample_record

    def test_as_marc_round_trip(self, sample_record):
        assert read(sample_record).as_marc() == sample_record

    def test_compose_updates_leader(self):
        leader = Leader.blank()
        raw = marc21.compose([DirectoryEntry.for_content("001", b"abc")], [b"abc"], leader)
        assert leader.record_length == len(raw) == 24 + 12 + 1 + 4 + 1
        assert leader.base_address_of_data == 37
        assert raw[:24] == leader.serialize()

    def test_compose_layout(self):
        leader = Leader.blank()
        raw = marc21.compose([DirectoryEntry.for_content("001", b"abc")], [b"abc"], leader)
        assert raw[24:] == b"001000400000" + b"\x1e" + b"abc\x1e" + b"\x1d"

    def test_compose_empty_record(self):
        leader = Leader.blank()
        raw = marc21.compose([], [], leader)
        assert raw == b"00026nam  2200025   4500\x1e\x1d"

    def test_mismatched_lengths(self):
        with pytest.raises(marc21.FieldCountMismatchError) as excinfo:
            marc21.compose([DirectoryEntry.for_content("001", b"abc")], [], Leader.blank())
        assert isinstance(excinfo.value, marc21.FormatError)

    def test_mismatch_leaves_leader_alone(self):
        leader = Leader.blank()
        with pytest.raises(marc21.FieldCountMismatchError):
            marc21.compose([], [b"abc"], leader)
        assert leader.record_length == 0

    def test_too_long(self):
        directory = [DirectoryEntry(tag="500", field_length=9999) for _ in range(11)]
        with pytest.raises(marc21.TooLongError):
            marc21.compose(directory, [b""] * 11, Leader.blank())

    def test_redecode_composed_record(self):
        pairs = [
            ("001", b"12345"),
            ("008", b"850101s1985    nyu           000 0 eng  "),
            ("100", b"1 \x1faDoe, Jane."),
            ("245", b"10\x1faA title :\x1fbsubtitle /\x1fcJane Doe."),
            ("650", b" 0\x1faCats.\x1faDogs."),
            ("ABC", b"\xff\xfe non-ascii bytes"),
        ]
        raw = Record.from_fields(pairs).as_marc()
        record = marc21.parse_record(raw)
        assert list(record.items()) == pairs
        assert marc21.record_seems_correct(raw) == (True, "")


class TestRecordModel:

    def test_directory_and_fields_must_align(self):
        with pytest.raises(pydantic.ValidationError):
            Record(leader=Leader.blank(), directory=[DirectoryEntry(tag="001", field_length=2)], fields=[])

    def test_field_access(self, sample_record):
        record = read(sample_record)
        assert record.get_field("245") == b"10\x1faTitle\x1fbsub"
        assert record.get_field("999") is None
        assert record.get_fields("001", "245") == record.fields
        assert record.get_fields() == record.fields
        assert record.control_number == b"ocm123"

    def test_subfields_of_field(self, sample_record):
        record = read(sample_record)
        assert record.subfields("245").first("a") == b"Title"
        assert record.subfields("999") is None

    def test_from_fields_accepts_text(self):
        record = Record.from_fields([("001", "abc")])
        assert record.fields == [b"abc"]
        assert record.directory[0].field_length == 4


class TestParseAndWrite:

    def test_parse_record(self, sample_record):
        assert marc21.parse_record(sample_record).tags() == ["001", "245"]

    def test_parse_record_trailing_bytes(self, sample_record):
        with pytest.raises(marc21.UnexhaustedRecordError):
            marc21.parse_record(sample_record + b"\n")

    def test_parse_record_empty(self):
        with pytest.raises(marc21.ShortReadError):
            marc21.parse_record(b"")

    def test_write_records(self, sample_record):
        records = list(marc21.read_records(io.BytesIO(sample_record * 2)))
        output = io.BytesIO()
        assert marc21.write_records(records, output) == 2
        assert output.getvalue() == sample_record * 2
