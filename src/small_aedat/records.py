import bisect
import struct
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import ClassVar, Final

import numpy as np
from flatbuffers import number_types as N

from small_aedat import tables
from small_aedat.exceptions import UnsupportedCompressionError
from small_aedat.well_known import (
    COMPRESSION_IDS,
    CompressionKind,
    DiagnosticKind,
    FrameFormat,
    FrameSource,
    Polarity,
    StreamKind,
    TriggerSource,
)

# <stream id (int32)><compressed size (int32)> in front of every packet body
PACKET_PREFIX_STRUCT: Final = struct.Struct("<iI")
IO_HEADER_LENGTH_STRUCT: Final = struct.Struct("<I")

NO_DATA_TABLE: Final = -1


@dataclass(slots=True, frozen=True)
class IOHeader:
    """File-wide header stored right after the magic line.

    Attributes:
        compression: Codec applied to every packet body and to the index table
        compression_id: Raw IOHeader compression id (LZ4_HIGH and ZSTD_HIGH map to LZ4 and ZSTD)
        data_table_position: Byte offset of the trailing index table, or -1 if absent
        description: XML stream description
    """

    compression: CompressionKind
    compression_id: int
    data_table_position: int
    description: str | None

    @classmethod
    def read(cls, data: bytes | memoryview) -> "IOHeader":
        table = tables.root_table(data)
        compression_id = tables.scalar(table, 0, N.Int32Flags, 0)
        try:
            compression = COMPRESSION_IDS[compression_id]
        except KeyError:
            raise UnsupportedCompressionError(f"id {compression_id}") from None
        return cls(
            compression=compression,
            compression_id=compression_id,
            data_table_position=tables.scalar(table, 1, N.Int64Flags, NO_DATA_TABLE),
            description=tables.string(table, 2),
        )

    @property
    def has_data_table(self) -> bool:
        return self.data_table_position >= 0


@dataclass(slots=True, frozen=True)
class PacketHeader:
    """Prefix of one container record.

    Attributes:
        stream_id: Owning stream
        compression: Codec of the body, inherited from the IOHeader
        compressed_size: Number of body bytes following the prefix
        uncompressed_size: Declared decompressed length, or None when the container omits it
        offset: Absolute position of the record prefix
    """

    stream_id: int
    compression: CompressionKind
    compressed_size: int
    uncompressed_size: int | None
    offset: int

    @property
    def end(self) -> int:
        return self.offset + PACKET_PREFIX_STRUCT.size + self.compressed_size


@dataclass(slots=True, frozen=True)
class StreamDescriptor:
    """One logical stream declared in the file description.

    ``width`` and ``height`` are the sensor geometry of event and frame streams and
    zero for the others. ``attributes`` keeps every ``<attr>`` of the stream node,
    including the ones of its ``info`` child, in document order.
    """

    id: int
    kind: StreamKind
    type_identifier: str
    width: int = 0
    height: int = 0
    attributes: tuple[tuple[str, str], ...] = ()

    @property
    def size(self) -> tuple[int, int] | None:
        if not self.kind.has_geometry:
            return None
        return (self.width, self.height)

    def attribute(self, key: str, default: str | None = None) -> str | None:
        for attribute_key, value in self.attributes:
            if attribute_key == key:
                return value
        return default


@dataclass(slots=True, frozen=True)
class DescriptionAttribute:
    attribute_type: str
    value: str | int


@dataclass(slots=True, frozen=True)
class DescriptionNode:
    name: str
    path: str
    attributes: tuple[tuple[str, DescriptionAttribute], ...] = ()
    nodes: tuple["DescriptionNode", ...] = ()


@dataclass(slots=True, frozen=True)
class FileDataDefinition:
    """One entry of the trailing index table.

    Attributes:
        byte_offset: Absolute position of the packet's record prefix
        stream_id: Owning stream
        size: Compressed body size
        elements_count: Number of records in the packet
        start_t: First timestamp of the packet (microseconds)
        end_t: Last timestamp of the packet (microseconds)
    """

    _PACKET_INFO: ClassVar[struct.Struct] = struct.Struct("<ii")

    byte_offset: int
    stream_id: int
    size: int
    elements_count: int
    start_t: int
    end_t: int

    @classmethod
    def read_table(cls, data: bytes | memoryview) -> list["FileDataDefinition"]:
        root = tables.root_table(data, "FTAB", size_prefixed=True)
        definitions = []
        for entry in tables.table_vector(root, 0, "index table"):
            stream_id, size = tables.struct_field(entry, 1, cls._PACKET_INFO) or (-1, 0)
            definitions.append(
                cls(
                    byte_offset=tables.scalar(entry, 0, N.Int64Flags),
                    stream_id=stream_id,
                    size=size,
                    elements_count=tables.scalar(entry, 2, N.Int64Flags),
                    start_t=tables.scalar(entry, 3, N.Int64Flags),
                    end_t=tables.scalar(entry, 4, N.Int64Flags),
                )
            )
        return definitions


class FileIndex:
    """Per-stream view of the index table, ordered by packet start time."""

    def __init__(self, definitions: Iterable[FileDataDefinition]) -> None:
        self.definitions = tuple(definitions)
        self.entries: dict[int, list[FileDataDefinition]] = {}
        for definition in self.definitions:
            self.entries.setdefault(definition.stream_id, []).append(definition)
        for entries in self.entries.values():
            entries.sort(key=lambda entry: (entry.start_t, entry.byte_offset))

    def locate(self, stream_id: int, timestamp: int) -> FileDataDefinition | None:
        """Find the last packet of a stream that starts at or before ``timestamp``.

        Targets earlier than the first packet resolve to the first packet.
        Returns None if the stream has no entries.
        """
        entries = self.entries.get(stream_id)
        if not entries:
            return None
        index = bisect.bisect_right(entries, timestamp, key=lambda entry: entry.start_t)
        return entries[max(index - 1, 0)]

    def __len__(self) -> int:
        return len(self.definitions)


@dataclass(slots=True)
class EventBatch:
    """Polarity events as contiguous columns.

    Attributes:
        t: Timestamps in microseconds (int64)
        x: Column coordinates (int16)
        y: Row coordinates (int16)
        on: Polarity, True for ON (bool)
    """

    t: np.ndarray
    x: np.ndarray
    y: np.ndarray
    on: np.ndarray

    def __len__(self) -> int:
        return len(self.t)

    def polarity(self, index: int) -> Polarity:
        return Polarity.ON if self.on[index] else Polarity.OFF

    def to_structured(self) -> np.ndarray:
        """Pack the columns into one structured array with fields t, x, y and on."""
        events = np.empty(
            len(self), dtype=[("t", "<i8"), ("x", "<i2"), ("y", "<i2"), ("on", "?")]
        )
        events["t"] = self.t
        events["x"] = self.x
        events["y"] = self.y
        events["on"] = self.on
        return events


@dataclass(slots=True)
class Frame:
    t: int
    start_t: int
    end_t: int
    exposure_start_t: int
    exposure_end_t: int
    exposure: int
    format: FrameFormat
    source: FrameSource
    offset_x: int
    offset_y: int
    pixels: np.ndarray = field(repr=False)

    def __len__(self) -> int:
        return 1

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]


@dataclass(slots=True)
class ImuBatch:
    """Inertial samples. Vector quantities are ``(n, 3)`` float32 arrays in x, y, z order."""

    t: np.ndarray
    temperature: np.ndarray
    accelerometer: np.ndarray
    gyroscope: np.ndarray
    magnetometer: np.ndarray

    def __len__(self) -> int:
        return len(self.t)


@dataclass(slots=True)
class TriggerBatch:
    t: np.ndarray
    source: np.ndarray

    def __len__(self) -> int:
        return len(self.t)

    def sources(self) -> list[TriggerSource]:
        return [TriggerSource(int(value)) for value in self.source]


RecordBatch = EventBatch | Frame | ImuBatch | TriggerBatch


@dataclass(slots=True, frozen=True)
class Packet:
    stream_id: int
    kind: StreamKind
    batch: RecordBatch
    header: PacketHeader = field(repr=False)


@dataclass(slots=True, frozen=True)
class Diagnostic:
    """A non-fatal anomaly observed while decoding.

    ``body`` holds the decompressed payload of a skipped packet, so callers can decode
    stream types this package does not handle. It is None for other diagnostics.
    """

    kind: DiagnosticKind
    stream_id: int
    offset: int
    message: str
    body: bytes | None = field(default=None, repr=False)
