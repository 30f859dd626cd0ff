"""
Reader and writer for MARC-21 records in the binary transmission format.

A record is laid out as a 24 byte leader, a directory of 12 byte entries
(tag, field length, field start) closed by a field terminator, the variable
fields each closed by a field terminator, and a final record terminator.

The codec is byte-transparent: field contents are kept as ``bytes`` and tags
are decoded with latin-1 so that any three bytes survive a round trip.
"""

import io
import logging
import typing

import pydantic

logger = logging.getLogger(__name__)

RECORD_SEP = 29
FIELD_SEP = 30
SUBFIELD_SEP = 31
RECORD_SEP_BIN = b'\x1d'
FIELD_SEP_BIN = b'\x1e'
SUBFIELD_SEP_BIN = b'\x1f'
SUBFIELD_SEP_STR = '\x1f'
TAG_ENCODING = 'latin-1'
LEADER_LENGTH = 24
DIRECTORY_ENTRY_LENGTH = 12
TAG_LENGTH = 3
MAX_RECORD_LENGTH = 99999
MAX_FIELD_LENGTH = 9999
BLANK_LEADER = b'00000nam  2200000   4500'


class FormatError(ValueError):
    pass


class ShortReadError(FormatError):
    pass


class ShortLeaderReadError(ShortReadError):
    pass


class ShortDirectoryReadError(ShortReadError):
    pass


class ShortFieldReadError(ShortReadError):
    pass


class MalformedError(FormatError):
    pass


class MissingTerminatorError(FormatError):
    pass


class MissingRecordTerminatorError(MissingTerminatorError):
    pass


class MissingFieldTerminatorError(MissingTerminatorError):
    pass


class FieldOverrunError(FormatError):
    pass


class UnexhaustedRecordError(FormatError):
    pass


class FieldCountMismatchError(FormatError):
    pass


class StructuralMismatchError(FormatError):
    pass


class TooShortForLeaderError(StructuralMismatchError):
    pass


class LengthMismatchError(StructuralMismatchError):
    pass


class ImpossibleBaseAddressError(StructuralMismatchError):
    pass


class DirectoryLengthNotAlignedError(StructuralMismatchError):
    pass


class DirectoryNotTerminatedError(StructuralMismatchError):
    pass


class RecordNotTerminatedError(StructuralMismatchError):
    pass


class TooLongError(FormatError):
    pass


ExceedsMaxLengthError = TooLongError


def _parse_decimal(buffer: bytes, what: str) -> int:
    # bytes.isdigit() only accepts ASCII digits, unlike int() which also takes
    # signs, underscores and surrounding whitespace.
    if not buffer.isdigit():
        raise MalformedError(f'non-numeric {what}: {buffer!r}')
    return int(buffer)


def _to_bytes(content: bytes | str) -> bytes:
    if isinstance(content, str):
        return content.encode(TAG_ENCODING)
    return bytes(content)


class Leader(pydantic.BaseModel):
    """The fixed 24 byte record header.

    Only the record length (positions 0-4) and the base address of data
    (positions 12-16) are decoded; every other position is kept verbatim in
    ``raw`` and can be read or written by offset.
    """

    model_config = pydantic.ConfigDict(validate_assignment=True)

    record_length: int = pydantic.Field(ge=0, le=MAX_RECORD_LENGTH)
    base_address_of_data: int = pydantic.Field(ge=0, le=MAX_RECORD_LENGTH)
    raw: bytes = pydantic.Field(min_length=LEADER_LENGTH, max_length=LEADER_LENGTH)

    @classmethod
    def parse(cls, buffer: bytes) -> 'Leader':
        if len(buffer) != LEADER_LENGTH:
            raise MalformedError(f'leader must be {LEADER_LENGTH} bytes long, got {len(buffer)} bytes')
        record_length = _parse_decimal(buffer[0:5], 'record length in leader')
        base_address = _parse_decimal(buffer[12:17], 'base address of data in leader')
        return cls(record_length=record_length, base_address_of_data=base_address, raw=bytes(buffer))

    @classmethod
    def blank(cls) -> 'Leader':
        return cls.parse(BLANK_LEADER)

    def serialize(self) -> bytes:
        return (b'%05d' % self.record_length + self.raw[5:12]
                + b'%05d' % self.base_address_of_data + self.raw[17:])

    def get(self, offset: int) -> str:
        if not 0 <= offset < LEADER_LENGTH:
            raise IndexError(f'leader offset {offset} out of range (0-{LEADER_LENGTH - 1})')
        return self.serialize()[offset:offset + 1].decode(TAG_ENCODING)

    def __getitem__(self, offset: int) -> str:
        return self.get(offset)

    def __setitem__(self, offset: int, value: bytes | str) -> None:
        if not 0 <= offset < LEADER_LENGTH:
            raise IndexError(f'leader offset {offset} out of range (0-{LEADER_LENGTH - 1})')
        if offset < 5 or 12 <= offset < 17:
            raise ValueError(f'leader offset {offset} belongs to a length field, '
                             'set record_length or base_address_of_data instead')
        value = _to_bytes(value)
        if len(value) != 1:
            raise ValueError('leader value must be a single character')
        self.raw = self.raw[:offset] + value + self.raw[offset + 1:]

    def __str__(self) -> str:
        return self.serialize().decode(TAG_ENCODING)


class DirectoryEntry(pydantic.BaseModel):
    tag: str
    field_length: int = pydantic.Field(ge=1, le=MAX_FIELD_LENGTH)
    field_start: int = pydantic.Field(default=0, ge=0, le=MAX_RECORD_LENGTH)

    @pydantic.field_validator('tag')
    @classmethod
    def _check_tag(cls, tag: str) -> str:
        try:
            encoded = tag.encode(TAG_ENCODING)
        except UnicodeEncodeError as e:
            raise ValueError(f'tag {tag!r} is not representable as raw bytes') from e
        if len(encoded) != TAG_LENGTH:
            raise ValueError(f'tag must be {TAG_LENGTH} characters long, got {tag!r}')
        return tag

    @classmethod
    def for_content(cls, tag: str, content: bytes | str) -> 'DirectoryEntry':
        """Build the entry for a field whose terminator-less content is ``content``."""
        field_length = len(_to_bytes(content)) + 1
        if field_length > MAX_FIELD_LENGTH:
            raise TooLongError(f'field {tag!r} is {field_length} bytes long, '
                               f'exceeds maximum field length ({MAX_FIELD_LENGTH})')
        return cls(tag=tag, field_length=field_length)

    @classmethod
    def parse_all(cls, buffer: bytes) -> list['DirectoryEntry']:
        buf_len = len(buffer)
        if buf_len % DIRECTORY_ENTRY_LENGTH != 0:
            raise MalformedError(f'directory length ({buf_len}) is not a multiple of {DIRECTORY_ENTRY_LENGTH}')

        entries = []
        for offset in range(0, buf_len, DIRECTORY_ENTRY_LENGTH):
            slot = buffer[offset: offset + DIRECTORY_ENTRY_LENGTH]
            tag = slot[0:3].decode(TAG_ENCODING)
            field_length = _parse_decimal(slot[3:7], f'field length in directory entry for {tag!r}')
            field_start = _parse_decimal(slot[7:12], f'field start in directory entry for {tag!r}')
            if field_length < 1:
                raise MalformedError(f'zero field length in directory entry for {tag!r}')
            entries.append(cls(tag=tag, field_length=field_length, field_start=field_start))

        return entries

    def serialize(self, field_start: int) -> bytes:
        return self.tag.encode(TAG_ENCODING) + b'%04d' % self.field_length + b'%05d' % field_start

    @staticmethod
    def serialize_all(entries: typing.Iterable['DirectoryEntry']) -> bytes:
        chunks = []
        field_start = 0
        for entry in entries:
            if field_start > MAX_RECORD_LENGTH:
                raise TooLongError(f'field start of {entry.tag!r} ({field_start}) '
                                   f'exceeds maximum record length ({MAX_RECORD_LENGTH})')
            chunks.append(entry.serialize(field_start))
            field_start += entry.field_length
        return b''.join(chunks)


class Subfield(pydantic.BaseModel):
    code: str
    value: bytes | str


def _code_str(code: bytes | str) -> str:
    if isinstance(code, bytes):
        return code.decode(TAG_ENCODING)
    return code


def parse_subfields(content: bytes | str) -> tuple[bytes | str, list[Subfield]]:
    """Split field content into its leading text and its subfields.

    The leading text is whatever comes before the first delimiter (the
    indicators of a data field). Empty segments carry no code and are
    dropped. Values keep the type of ``content``.
    """
    delimiter = SUBFIELD_SEP_BIN if isinstance(content, bytes) else SUBFIELD_SEP_STR
    segments = content.split(delimiter)
    subfields = []
    for segment in segments[1:]:
        if not segment:
            continue
        subfields.append(Subfield(code=_code_str(segment[0:1]), value=segment[1:]))
    return segments[0], subfields


class Subfields:
    """The ordered (code, value) pairs of one field's content."""

    def __init__(self, content: bytes | str = b''):
        self.prefix, self._subfields = parse_subfields(content)

    def values_for(self, code: bytes | str) -> typing.Iterator[bytes | str]:
        code = _code_str(code)
        return (subfield.value for subfield in self._subfields if subfield.code == code)

    def first(self, code: bytes | str, default=None):
        return next(self.values_for(code), default)

    def codes(self) -> list[str]:
        return [subfield.code for subfield in self._subfields]

    def __iter__(self) -> typing.Iterator[Subfield]:
        return iter(self._subfields)

    def __len__(self) -> int:
        return len(self._subfields)

    def __contains__(self, code: bytes | str) -> bool:
        return self.first(code) is not None

    def __repr__(self) -> str:
        pairs = ', '.join(f'{s.code}={s.value!r}' for s in self._subfields)
        return f'Subfields({pairs})'


def read_fields(raw_fields: bytes, directory: list[DirectoryEntry]) -> list[bytes]:
    """Carve the field data segment into terminator-less field contents.

    ``raw_fields`` is every field with its field terminator, followed by the
    record terminator. The result is index-aligned with ``directory``.
    """
    raw_len = len(raw_fields)
    if not raw_fields or raw_fields[-1] != RECORD_SEP:
        raise MissingRecordTerminatorError('missing trailing record terminator')

    fields = []
    field_start = 0
    for entry in directory:
        next_field_start = field_start + entry.field_length
        if next_field_start >= raw_len:
            raise FieldOverrunError(f'misaligned field {entry.tag!r}, extending past the record')

        field = raw_fields[field_start:next_field_start]
        if field[-1] != FIELD_SEP:
            raise MissingFieldTerminatorError(f'missing field terminator at end of field {entry.tag!r}')

        fields.append(field[:-1])
        field_start = next_field_start

    if field_start + 1 != raw_len:
        raise UnexhaustedRecordError(f'field extents ({field_start + 1} bytes) do not exhaust '
                                     f'record field data ({raw_len} bytes)')

    return fields


def compose(directory: list[DirectoryEntry], fields: list[bytes], leader: Leader) -> bytes:
    """Build the raw record and update ``leader``'s length and base address."""
    if len(directory) != len(fields):
        raise FieldCountMismatchError(f'directory has {len(directory)} entries but there are {len(fields)} fields')

    directory_size = len(directory) * DIRECTORY_ENTRY_LENGTH
    record_size = LEADER_LENGTH + directory_size
    record_size += 1  # field terminator closing the directory
    record_size += sum(entry.field_length for entry in directory)
    record_size += 1  # record terminator
    if record_size > MAX_RECORD_LENGTH:
        raise TooLongError(f'record length ({record_size}) exceeds maximum legal record length '
                           f'({MAX_RECORD_LENGTH})')

    leader.record_length = record_size
    leader.base_address_of_data = LEADER_LENGTH + directory_size + 1

    chunks = [leader.serialize(), DirectoryEntry.serialize_all(directory), FIELD_SEP_BIN]
    for field in fields:
        chunks.append(_to_bytes(field))
        chunks.append(FIELD_SEP_BIN)
    chunks.append(RECORD_SEP_BIN)

    logger.debug('composed record of %d bytes with %d fields', record_size, len(fields))
    return b''.join(chunks)


class Record(pydantic.BaseModel):
    leader: Leader
    directory: list[DirectoryEntry]
    fields: list[bytes]

    @pydantic.model_validator(mode='after')
    def _check_alignment(self) -> 'Record':
        if len(self.directory) != len(self.fields):
            raise ValueError(f'directory has {len(self.directory)} entries '
                             f'but there are {len(self.fields)} fields')
        return self

    @classmethod
    def from_fields(cls, pairs: typing.Iterable[tuple[str, bytes | str]], leader: Leader | None = None) -> 'Record':
        directory = []
        fields = []
        for tag, content in pairs:
            directory.append(DirectoryEntry.for_content(tag, content))
            fields.append(_to_bytes(content))
        return cls(leader=leader or Leader.blank(), directory=directory, fields=fields)

    def tags(self) -> list[str]:
        return [entry.tag for entry in self.directory]

    def items(self) -> typing.Iterator[tuple[str, bytes]]:
        return zip(self.tags(), self.fields)

    def get_fields(self, *tags: str) -> list[bytes]:
        """Contents of the fields with any of ``tags``, in record order.

        With no tags every field is returned.
        """
        return [field for tag, field in self.items() if not tags or tag in tags]

    def get_field(self, tag: str) -> bytes | None:
        for field_tag, field in self.items():
            if field_tag == tag:
                return field
        return None

    def subfields(self, tag: str) -> Subfields | None:
        field = self.get_field(tag)
        if field is None:
            return None
        return Subfields(field)

    @property
    def control_number(self) -> bytes | None:
        return self.get_field('001')

    def as_marc(self) -> bytes:
        return compose(self.directory, self.fields, self.leader)


def _read_exactly(stream: typing.BinaryIO, size: int) -> bytes:
    buffer = b''
    while len(buffer) < size:
        block = stream.read(size - len(buffer))
        if not block:
            break
        buffer += block
    return buffer


def read_next_record(stream: typing.BinaryIO) -> Record | None:
    """Read one record from ``stream``.

    Returns ``None`` at a clean end of file, that is when not a single byte of
    a new record could be read. Anything else that goes wrong raises a
    ``FormatError``.
    """
    leader_buf = _read_exactly(stream, LEADER_LENGTH)
    if not leader_buf:
        return None
    if len(leader_buf) != LEADER_LENGTH:
        raise ShortLeaderReadError(f'short read for a leader or premature EOF '
                                   f'(expected {LEADER_LENGTH} bytes, got {len(leader_buf)} bytes)')

    leader = Leader.parse(leader_buf)
    if leader.base_address_of_data <= LEADER_LENGTH:
        raise MalformedError(f'impossible base address of data ({leader.base_address_of_data})')
    if leader.base_address_of_data > leader.record_length:
        raise MalformedError(f'base address of data ({leader.base_address_of_data}) '
                             f'lies beyond record length ({leader.record_length})')

    directory_length = leader.base_address_of_data - LEADER_LENGTH
    directory_buf = _read_exactly(stream, directory_length)
    if len(directory_buf) != directory_length:
        raise ShortDirectoryReadError(f'short read for a directory or premature EOF '
                                      f'(expected {directory_length} bytes, got {len(directory_buf)} bytes)')
    if directory_buf[-1] != FIELD_SEP:
        raise MissingFieldTerminatorError('directory is not terminated with a field terminator')
    directory = DirectoryEntry.parse_all(directory_buf[:-1])

    field_data_length = leader.record_length - LEADER_LENGTH - directory_length
    raw_fields = _read_exactly(stream, field_data_length)
    if len(raw_fields) != field_data_length:
        raise ShortFieldReadError(f'short read for field data or premature EOF '
                                  f'(expected {field_data_length} bytes, got {len(raw_fields)} bytes)')
    fields = read_fields(raw_fields, directory)

    logger.debug('read record of %d bytes with %d fields', leader.record_length, len(fields))
    return Record(leader=leader, directory=directory, fields=fields)


def read_records(stream: typing.BinaryIO) -> typing.Iterator[Record]:
    while True:
        record = read_next_record(stream)
        if record is None:
            return
        yield record


def parse_record(buffer: bytes) -> Record:
    stream = io.BytesIO(buffer)
    record = read_next_record(stream)
    if record is None:
        raise ShortLeaderReadError('no record data')
    trailing = len(buffer) - stream.tell()
    if trailing:
        raise UnexhaustedRecordError(f'{trailing} bytes left over after the record')
    return record


def write_records(records: typing.Iterable[Record], stream: typing.BinaryIO) -> int:
    count = 0
    for record in records:
        stream.write(record.as_marc())
        count += 1
    return count


def validate_record(buffer: bytes) -> None:
    """Run the structural sanity checks on a serialized record.

    Raises the error for the first check that fails. Field contents, tags and
    subfields are not looked at.
    """
    if len(buffer) < LEADER_LENGTH:
        raise TooShortForLeaderError('record too small to contain leader')

    leader = Leader.parse(buffer[:LEADER_LENGTH])

    if leader.record_length != len(buffer):
        raise LengthMismatchError(f"leader's record length ({leader.record_length}) "
                                  f'does not equal actual record length ({len(buffer)})')

    if len(buffer) > MAX_RECORD_LENGTH:
        raise ExceedsMaxLengthError(f'record length ({len(buffer)}) exceeds maximum legal record length '
                                    f'({MAX_RECORD_LENGTH})')

    if not LEADER_LENGTH < leader.base_address_of_data <= len(buffer):
        raise ImpossibleBaseAddressError(f'impossible base address of data ({leader.base_address_of_data})')

    directory_length = leader.base_address_of_data - LEADER_LENGTH - 1
    if directory_length % DIRECTORY_ENTRY_LENGTH != 0:
        raise DirectoryLengthNotAlignedError(f'directory length ({directory_length}) '
                                             f'is not a multiple of {DIRECTORY_ENTRY_LENGTH}')

    if buffer[leader.base_address_of_data - 1] != FIELD_SEP:
        raise DirectoryNotTerminatedError('directory is not terminated with a field terminator')

    if buffer[-1] != RECORD_SEP:
        raise RecordNotTerminatedError('record is not terminated with a record terminator')


def record_seems_correct(buffer: bytes) -> tuple[bool, str]:
    try:
        validate_record(buffer)
    except FormatError as e:
        return False, str(e)
    return True, ''
