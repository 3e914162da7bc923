"""Tests for the container layer: magic, IOHeader and record framing."""

import io
import struct

import pytest
from small_aedat import (
    MAGIC,
    CompressionKind,
    ContainerReader,
    MalformedSchemaError,
    NotAedat4Error,
    ReadError,
    SeekUnsupportedError,
    TruncatedRecordError,
    UnknownStreamIdError,
    UnsupportedCompressionError,
    UnsupportedVersionError,
)

from tests.conftest import EVENTS_STREAM, IMU_STREAM
from tests.fixtures.aedat_generator import AedatFileBuilder, io_header


class NonSeekableBytesIO(io.BytesIO):
    def seekable(self) -> bool:
        return False


def test_header_fields(two_stream_builder):
    reader = ContainerReader(io.BytesIO(two_stream_builder.build()))

    assert reader.header.compression is CompressionKind.NONE
    assert reader.header.compression_id == 0
    assert reader.header.has_data_table
    assert [stream.id for stream in reader.streams] == [0, 1]
    assert reader.data_start == two_stream_builder.packet_offsets()[0]
    assert reader.position == reader.data_start


def test_records_in_file_order(two_stream_builder):
    reader = ContainerReader(io.BytesIO(two_stream_builder.build()))

    records = list(reader.records())

    assert [header.stream_id for header, _ in records] == [0, 1]
    assert [header.offset for header, _ in records] == two_stream_builder.packet_offsets()
    for (header, body), packet in zip(records, two_stream_builder.packets, strict=True):
        assert header.compressed_size == len(packet.body)
        assert header.uncompressed_size is None
        assert body == packet.body
    assert reader.next_record() is None


def test_stops_before_index_table(two_stream_builder):
    data = two_stream_builder.build()
    reader = ContainerReader(io.BytesIO(data))

    assert len(list(reader.records())) == 2
    assert reader.position == reader.data_end
    assert reader.data_end < len(data)


def test_file_without_index_ends_at_eof():
    builder = AedatFileBuilder([EVENTS_STREAM], with_index=False)
    builder.add_events(0, [(1, 0, 0, True)])
    reader = ContainerReader(io.BytesIO(builder.build()))

    assert reader.data_end is None
    assert len(list(reader.records())) == 1
    assert reader.file_index is None


def test_rewinds_seekable_stream(two_stream_builder):
    stream = io.BytesIO(two_stream_builder.build())
    stream.seek(10)

    reader = ContainerReader(stream)

    assert len(list(reader.records())) == 2


@pytest.mark.parametrize("data", [b"", b"PK\x03\x04 not an aedat file", b"#!AER"])
def test_not_aedat4(data):
    with pytest.raises(NotAedat4Error, match="invalid magic"):
        ContainerReader(io.BytesIO(data))


@pytest.mark.parametrize("version", [b"2.0", b"3.1"])
def test_older_versions_are_unsupported(version):
    with pytest.raises(UnsupportedVersionError, match=version.decode()):
        ContainerReader(io.BytesIO(b"#!AER-DAT" + version + b"\r\n# rest of a header\r\n"))


def test_truncated_header():
    with pytest.raises(TruncatedRecordError):
        ContainerReader(io.BytesIO(MAGIC + struct.pack("<I", 200) + b"\x00" * 10))


def test_unknown_compression_id():
    builder = AedatFileBuilder([EVENTS_STREAM], compression_id=7)
    with pytest.raises(UnsupportedCompressionError, match="7"):
        ContainerReader(io.BytesIO(builder.build()))


@pytest.mark.parametrize(("compression_id", "kind"), [(2, "lz4"), (4, "zstd")])
def test_high_compression_ids_share_codec(compression_id, kind):
    builder = AedatFileBuilder(
        [EVENTS_STREAM], CompressionKind(kind), compression_id=compression_id
    )
    reader = ContainerReader(io.BytesIO(builder.build()))
    assert reader.header.compression is CompressionKind(kind)
    assert reader.header.compression_id == compression_id


def test_missing_description():
    header = io_header(0, -1, None)
    data = MAGIC + struct.pack("<I", len(header)) + header
    with pytest.raises(MalformedSchemaError, match="description is empty"):
        ContainerReader(io.BytesIO(data))


def test_garbage_header():
    data = MAGIC + struct.pack("<I", 3) + b"\xff\xff\xff"
    with pytest.raises(MalformedSchemaError, match="unreadable IOHeader"):
        ContainerReader(io.BytesIO(data))


def test_truncated_packet_body():
    builder = AedatFileBuilder([EVENTS_STREAM], with_index=False)
    builder.add_events(0, [(1, 0, 0, True)])
    builder.add_events(0, [(2, 1, 1, True), (3, 2, 2, True)])
    data = builder.build()
    second = builder.packet_offsets()[1]

    reader = ContainerReader(io.BytesIO(data[:-5]))
    assert reader.next_record() is not None
    with pytest.raises(TruncatedRecordError) as exc_info:
        reader.next_record()
    assert exc_info.value.offset == second


def test_truncated_packet_prefix():
    builder = AedatFileBuilder([EVENTS_STREAM], with_index=False)
    builder.add_events(0, [(1, 0, 0, True)])
    data = builder.build() + b"\x00\x00\x00"

    reader = ContainerReader(io.BytesIO(data))
    reader.next_record()
    with pytest.raises(TruncatedRecordError, match="expected 8 bytes, got 3"):
        reader.next_record()


def test_packet_overlapping_index_table():
    builder = AedatFileBuilder([EVENTS_STREAM])
    builder.add_events(0, [(1, 0, 0, True)])
    data = bytearray(builder.build())
    offset = builder.packet_offsets()[0]
    # Declare a body that runs past the index table position.
    struct.pack_into("<I", data, offset + 4, len(builder.packets[0].body) + 64)

    reader = ContainerReader(io.BytesIO(bytes(data)))
    with pytest.raises(TruncatedRecordError) as exc_info:
        reader.next_record()
    assert exc_info.value.offset == offset


def test_unknown_stream_id():
    builder = AedatFileBuilder([EVENTS_STREAM, IMU_STREAM], with_index=False)
    builder.add_events(0, [(1, 0, 0, True)])
    builder.add_events(5, [(2, 0, 0, True)])
    reader = ContainerReader(io.BytesIO(builder.build()))

    reader.next_record()
    with pytest.raises(UnknownStreamIdError, match="unknown stream id 5"):
        reader.next_record()


def test_non_seekable_stream_reads_sequentially(two_stream_builder):
    reader = ContainerReader(NonSeekableBytesIO(two_stream_builder.build()))

    assert len(list(reader.records())) == 2
    with pytest.raises(SeekUnsupportedError):
        _ = reader.file_index


def test_index_is_read_once(seekable_builder, mocker):
    reader = ContainerReader(io.BytesIO(seekable_builder.build()))
    decompress = mocker.spy(reader._codecs, "decompress")

    first = reader.file_index
    second = reader.file_index

    assert first is second
    assert decompress.call_count == 1
    assert len(first) == len(seekable_builder.packets)


def test_index_does_not_move_cursor(seekable_builder):
    reader = ContainerReader(io.BytesIO(seekable_builder.build()))
    reader.next_record()
    position = reader.position

    assert reader.file_index is not None

    assert reader.position == position
    header, _ = reader.next_record()
    assert header.offset == seekable_builder.packet_offsets()[1]


def test_record_prefix_crossing_index_table():
    builder = AedatFileBuilder([EVENTS_STREAM])
    builder.add_events(0, [(1, 0, 0, True)])
    builder.add_events(0, [(2, 1, 1, True)])
    data = bytearray(builder.build())
    first, second = builder.packet_offsets()
    table_position = second + 8 + len(builder.packets[1].body)
    # Move the declared index table into the middle of the second prefix.
    field = data.index(struct.pack("<q", table_position), len(MAGIC), first)
    struct.pack_into("<q", data, field, second + 4)

    reader = ContainerReader(io.BytesIO(bytes(data)))
    assert reader.data_end == second + 4
    assert reader.next_record() is not None
    with pytest.raises(TruncatedRecordError, match="expected 8 bytes, got 4") as exc_info:
        reader.next_record()
    assert exc_info.value.offset == second


def test_closed_source_is_a_read_error(two_stream_builder):
    stream = io.BytesIO(two_stream_builder.build())
    reader = ContainerReader(stream)
    stream.close()

    with pytest.raises(ReadError, match="failed to read 8 bytes"):
        reader.next_record()
