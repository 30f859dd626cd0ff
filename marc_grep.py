"""Extract field and subfield values from a file of MARC-21 records."""

import argparse
import logging
import re
import sys
import typing

import pydantic

import marc21

logger = logging.getLogger(__name__)

LEADER_FILTER_PATTERN = re.compile(r'L\[([0-9]+)\]=(.)')

EPILOG = '''\
Field references are an optional leader filter followed by a field tag, optionally
followed by one or more subfield codes, e.g. "712", "859aw" or "L[5]=c;245a".
A leader filter "L[offset]=c;" only looks at records whose leader has the
character c at the given offset.
'''


class UsageError(ValueError):
    pass


class FieldReference(pydantic.BaseModel):
    leader_offset: int | None = None
    leader_char: str | None = None
    tag: str = ''
    subfield_codes: str = ''

    @property
    def has_leader_filter(self) -> bool:
        return self.leader_char is not None


def parse_field_reference(reference: str) -> FieldReference:
    leader_offset = None
    leader_char = None
    if reference.startswith('L'):
        match = LEADER_FILTER_PATTERN.match(reference)
        if match is None or match.group(2) == ';':
            raise UsageError('bad leader match specification')
        leader_offset = int(match.group(1))
        leader_char = match.group(2)
        if leader_offset >= marc21.LEADER_LENGTH:
            raise UsageError(f'leader match offset exceeds leader length ({marc21.LEADER_LENGTH})')
        if reference[match.end():match.end() + 1] != ';':
            raise UsageError("missing ';' after leader match specification")
        reference = reference[match.end() + 1:]

    tag = ''
    subfield_codes = ''
    if reference:
        if len(reference) < marc21.TAG_LENGTH:
            raise UsageError(f'bad field pattern "{reference}", must be at least '
                             f'{marc21.TAG_LENGTH} characters in length')
        tag = reference[:marc21.TAG_LENGTH]
        subfield_codes = reference[marc21.TAG_LENGTH:]

    return FieldReference(leader_offset=leader_offset, leader_char=leader_char,
                          tag=tag, subfield_codes=subfield_codes)


def grep_record(record: marc21.Record, reference: FieldReference, output: typing.BinaryIO) -> bool:
    """Write the values ``reference`` selects from ``record``.

    Only the first field carrying the tag is looked at. Returns whether
    anything matched.
    """
    if reference.has_leader_filter:
        if record.leader[reference.leader_offset] != reference.leader_char:
            return False
        if not reference.tag:
            return True

    control_number = b''
    for tag, field in record.items():
        if tag == '001':
            control_number = field
        if tag != reference.tag:
            continue

        if not reference.subfield_codes:
            output.write(field + b'\n')
            return True

        matched = False
        subfields = marc21.Subfields(field)
        for code in reference.subfield_codes:
            for value in subfields.values_for(code):
                matched = True
                output.write(control_number + b':' + code.encode(marc21.TAG_ENCODING) + b':' + value + b'\n')
        return matched

    return False


def field_grep(stream: typing.BinaryIO, reference: FieldReference, output: typing.BinaryIO) -> tuple[int, int]:
    count = 0
    matched_count = 0
    for record in marc21.read_records(stream):
        count += 1
        if grep_record(record, reference, output):
            matched_count += 1
    logger.debug('scanned %d records', count)
    return matched_count, count


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog='marc_grep',
        description='Extract field and subfield values from MARC-21 records.',
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('input_filename', help='Path to a file of MARC-21 records')
    parser.add_argument('field_reference', help='Field reference, see below')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'])
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        reference = parse_field_reference(args.field_reference)
    except UsageError as e:
        parser.error(str(e))

    try:
        fp = open(args.input_filename, 'rb')
    except OSError as e:
        print(f'{parser.prog}: can\'t open "{args.input_filename}" for reading: {e.strerror}', file=sys.stderr)
        return 1

    with fp:
        try:
            matched_count, count = field_grep(fp, reference, sys.stdout.buffer)
        except marc21.FormatError as e:
            sys.stdout.flush()
            print(f'{parser.prog}: {e}', file=sys.stderr)
            return 1

    sys.stdout.flush()
    print(f'Matched {matched_count} records of {count} overall records.', file=sys.stderr)
    return 0


if __name__ == '__main__':
    sys.exit(main())
