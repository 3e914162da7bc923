import io
import logging
import struct
from collections.abc import Iterator
from functools import cached_property
from typing import IO

from small_aedat.compression import DEFAULT_CODECS, CodecRegistry
from small_aedat.exceptions import (
    MalformedSchemaError,
    NotAedat4Error,
    PayloadError,
    ReadError,
    SeekError,
    SeekUnsupportedError,
    TruncatedRecordError,
    UnknownSeekStreamError,
    UnknownStreamIdError,
    UnsupportedVersionError,
)
from small_aedat.records import (
    IO_HEADER_LENGTH_STRUCT,
    PACKET_PREFIX_STRUCT,
    FileDataDefinition,
    FileIndex,
    IOHeader,
    PacketHeader,
    StreamDescriptor,
)
from small_aedat.schema import parse_description
from small_aedat.well_known import MAGIC, MAGIC_PREFIX, MAGIC_SIZE

logger = logging.getLogger(__name__)


def _check_magic(magic: bytes) -> None:
    if magic == MAGIC:
        return
    if magic.startswith(MAGIC_PREFIX):
        version = magic[len(MAGIC_PREFIX) :].split(b"\r", 1)[0]
        raise UnsupportedVersionError(version.decode("ascii", "replace"))
    raise NotAedat4Error(magic)


class ContainerReader:
    """Sequential access to the packet records of an AEDAT4 file.

    The reader owns the cursor of ``stream``: it validates the magic line, parses the
    IOHeader and its stream description once, then hands out one raw record per
    :meth:`next_record` call. Record bodies are returned still compressed.

    Offsets are absolute, the stream is rewound to its start when it is seekable.
    """

    def __init__(self, stream: IO[bytes], *, codecs: CodecRegistry = DEFAULT_CODECS) -> None:
        self._stream = stream
        self._codecs = codecs
        self._seekable = stream.seekable()
        if self._seekable:
            stream.seek(0, io.SEEK_SET)
        self._position = 0

        _check_magic(self._read(MAGIC_SIZE, allow_short=True))
        (length,) = IO_HEADER_LENGTH_STRUCT.unpack(self._read(IO_HEADER_LENGTH_STRUCT.size))
        header_data = self._read(length)
        try:
            self.header = IOHeader.read(header_data)
        except (PayloadError, struct.error, TypeError, IndexError, UnicodeDecodeError) as exc:
            raise MalformedSchemaError(f"unreadable IOHeader: {exc}") from exc
        if not self.header.description:
            raise MalformedSchemaError("the description is empty")

        self.streams: tuple[StreamDescriptor, ...] = parse_description(self.header.description)
        self._streams_by_id = {stream.id: stream for stream in self.streams}
        self.data_start = self._position
        self.data_end: int | None = (
            self.header.data_table_position if self.header.has_data_table else None
        )
        logger.debug(
            f"Opened AEDAT4 stream with {len(self.streams)} streams, "
            f"{self.header.compression.value} compression, "
            f"data table at {self.header.data_table_position}"
        )

    def _read(self, size: int, *, allow_short: bool = False) -> bytes:
        offset = self._position
        try:
            data = self._stream.read(size)
        except (OSError, ValueError) as exc:
            raise ReadError(f"failed to read {size} bytes at offset {offset}: {exc}") from exc
        if len(data) < size and not allow_short:
            raise TruncatedRecordError(offset, size, len(data))
        self._position += len(data)
        return data

    @property
    def position(self) -> int:
        return self._position

    def stream(self, stream_id: int) -> StreamDescriptor:
        return self._streams_by_id[stream_id]

    def next_record(self) -> tuple[PacketHeader, bytes] | None:
        """Read the next record prefix and its compressed body.

        Returns:
            The record, or None once the data table or the end of input is reached

        Raises:
            TruncatedRecordError: If the input ends inside the record
            UnknownStreamIdError: If the record names a stream missing from the description
        """
        offset = self._position
        if self.data_end is not None:
            if offset >= self.data_end:
                return None
            if offset + PACKET_PREFIX_STRUCT.size > self.data_end:
                raise TruncatedRecordError(
                    offset, PACKET_PREFIX_STRUCT.size, self.data_end - offset
                )

        prefix = self._read(PACKET_PREFIX_STRUCT.size, allow_short=True)
        if not prefix:
            return None
        if len(prefix) < PACKET_PREFIX_STRUCT.size:
            raise TruncatedRecordError(offset, PACKET_PREFIX_STRUCT.size, len(prefix))

        stream_id, size = PACKET_PREFIX_STRUCT.unpack(prefix)
        if stream_id not in self._streams_by_id:
            raise UnknownStreamIdError(stream_id, offset)

        header = PacketHeader(
            stream_id=stream_id,
            compression=self.header.compression,
            compressed_size=size,
            uncompressed_size=None,
            offset=offset,
        )
        if self.data_end is not None and header.end > self.data_end:
            # The body would run into the index table.
            raise TruncatedRecordError(offset, size, self.data_end - self._position)
        body = self._read(size, allow_short=True)
        if len(body) < size:
            raise TruncatedRecordError(offset, size, len(body))
        return header, body

    def records(self) -> Iterator[tuple[PacketHeader, bytes]]:
        while (record := self.next_record()) is not None:
            yield record

    @cached_property
    def file_index(self) -> FileIndex | None:
        """Index table of the file, read on first access. None if the file has no table."""
        if not self.header.has_data_table:
            return None
        if not self._seekable:
            raise SeekUnsupportedError("the index table cannot be read from a non-seekable stream")

        try:
            self._stream.seek(self.header.data_table_position, io.SEEK_SET)
            raw = self._stream.read()
        except (OSError, ValueError) as exc:
            raise ReadError(f"failed to read the index table: {exc}") from exc
        finally:
            self._stream.seek(self._position, io.SEEK_SET)

        data = self._codecs.decompress(self.header.compression, raw)
        try:
            definitions = FileDataDefinition.read_table(data)
        except (PayloadError, struct.error, TypeError, IndexError) as exc:
            raise ReadError(f"unreadable index table: {exc}") from exc
        logger.debug(f"Loaded index table with {len(definitions)} entries")
        return FileIndex(definitions)

    def seek(self, stream_id: int, timestamp: int) -> int:
        """Move the cursor to the packet of ``stream_id`` that covers ``timestamp``.

        The chosen packet is the last one starting at or before ``timestamp``, or the
        first packet of the stream if ``timestamp`` precedes it.

        Returns:
            The offset of the chosen record

        Raises:
            SeekUnsupportedError: If the file has no index table
            UnknownSeekStreamError: If the stream has no indexed packets
        """
        index = self.file_index
        if index is None:
            raise SeekUnsupportedError
        entry = index.locate(stream_id, timestamp)
        if entry is None:
            raise UnknownSeekStreamError(stream_id)
        self.seek_to_offset(entry.byte_offset)
        logger.debug(f"Seeked stream {stream_id} to t={timestamp} at offset {entry.byte_offset}")
        return entry.byte_offset

    def seek_to_offset(self, offset: int) -> None:
        if not self._seekable:
            raise SeekUnsupportedError("the source is not seekable")
        end = self.data_end
        if offset < self.data_start or (end is not None and offset > end):
            raise SeekError(f"offset {offset} is outside the data section")
        self._stream.seek(offset, io.SEEK_SET)
        self._position = offset
