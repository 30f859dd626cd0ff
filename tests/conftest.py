"""
Pytest fixtures shared by the MARC-21 codec tests.
"""

import io

import pytest

import marc21

SAMPLE_LEADER = b"00072nam a2200049   4500"
SAMPLE_DIRECTORY = b"001000700000" + b"245001500007"
SAMPLE_FIELD_DATA = b"ocm123\x1e" + b"10\x1faTitle\x1fbsub\x1e" + b"\x1d"


@pytest.fixture
def sample_record():
    """A complete 72 byte record with a control field and a data field."""
    return SAMPLE_LEADER + SAMPLE_DIRECTORY + b"\x1e" + SAMPLE_FIELD_DATA


@pytest.fixture
def sample_directory():
    return [
        marc21.DirectoryEntry(tag="001", field_length=7),
        marc21.DirectoryEntry(tag="245", field_length=15, field_start=7),
    ]


@pytest.fixture
def sample_field_data():
    return SAMPLE_FIELD_DATA


@pytest.fixture
def grep_records():
    """Two records for exercising the field grep."""
    first = marc21.Record.from_fields([
        ("001", b"rec1"),
        ("245", b"10\x1faFirst\x1fbone"),
        ("650", b" 0\x1faCats\x1faDogs"),
    ])
    first.leader[5] = "c"
    second = marc21.Record.from_fields([
        ("001", b"rec2"),
        ("245", b"00\x1faSecond"),
    ])
    return [first, second]


@pytest.fixture
def grep_file(tmp_path, grep_records):
    path = tmp_path / "records.mrc"
    stream = io.BytesIO()
    marc21.write_records(grep_records, stream)
    path.write_bytes(stream.getvalue())
    return path
