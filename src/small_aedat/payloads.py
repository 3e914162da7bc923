"""Decode decompressed packet payloads into typed record batches.

Payloads are size-prefixed flatbuffers whose file identifier is the stream's type
identifier. Event vectors are fixed-size structs and are viewed in place with numpy
before being copied into owned, contiguous columns. IMU and trigger elements are
tables and are walked one by one.
"""

import struct
from collections.abc import Callable

import numpy as np
from flatbuffers import number_types as N
from flatbuffers.table import Table

from small_aedat import tables
from small_aedat.exceptions import (
    CoordinateOutOfBoundsError,
    GeometryMismatchError,
    SchemaMismatchError,
)
from small_aedat.records import (
    EventBatch,
    Frame,
    ImuBatch,
    RecordBatch,
    StreamDescriptor,
    TriggerBatch,
)
from small_aedat.well_known import FrameFormat, FrameSource, StreamKind

# struct Event { int64 timestamp; int16 x; int16 y; bool on; } padded to 16 bytes
EVENT_DTYPE = np.dtype(
    {
        "names": ["t", "x", "y", "on"],
        "formats": ["<i8", "<i2", "<i2", "?"],
        "offsets": [0, 8, 10, 12],
        "itemsize": 16,
    }
)

_IMU_FLOAT_FIELDS = 10  # temperature, accelerometer xyz, gyroscope xyz, magnetometer xyz


def _decode_events(stream: StreamDescriptor, root: Table) -> EventBatch:
    start, length = tables.vector(root, 0, EVENT_DTYPE.itemsize, "event")
    if length == 0:
        return EventBatch(
            t=np.empty(0, dtype=np.int64),
            x=np.empty(0, dtype=np.int16),
            y=np.empty(0, dtype=np.int16),
            on=np.empty(0, dtype=np.bool_),
        )
    events = np.frombuffer(root.Bytes, dtype=EVENT_DTYPE, count=length, offset=start)
    x = events["x"].copy()
    y = events["y"].copy()

    outside = np.flatnonzero((x < 0) | (x >= stream.width) | (y < 0) | (y >= stream.height))
    if len(outside):
        index = int(outside[0])
        raise CoordinateOutOfBoundsError(
            stream.id, index, int(x[index]), int(y[index]), (stream.width, stream.height)
        )

    return EventBatch(
        t=events["t"].copy(),
        x=x,
        y=y,
        on=events["on"].copy(),
    )


def _decode_frame(stream: StreamDescriptor, root: Table) -> Frame:
    width = tables.scalar(root, 6, N.Int16Flags)
    height = tables.scalar(root, 7, N.Int16Flags)
    if (width, height) != (stream.width, stream.height):
        raise GeometryMismatchError(stream.id, (stream.width, stream.height), (width, height))

    raw_format = tables.scalar(root, 5, N.Int8Flags)
    raw_source = tables.scalar(root, 12, N.Int8Flags)
    try:
        frame_format = FrameFormat(raw_format)
        source = FrameSource(raw_source)
    except ValueError as exc:
        raise SchemaMismatchError(f"stream {stream.id}: {exc}") from None

    start, length = tables.vector(root, 10, 1, "pixel")
    expected = width * height * frame_format.channels
    if length != expected:
        raise SchemaMismatchError(
            f"stream {stream.id} frame has {length} pixel bytes, "
            f"{width}x{height} {frame_format.name} needs {expected}"
        )
    shape: tuple[int, ...] = (height, width)
    if frame_format is not FrameFormat.GRAY:
        shape = (height, width, frame_format.channels)
    pixels = np.frombuffer(root.Bytes, dtype=np.uint8, count=length, offset=start).reshape(shape)

    return Frame(
        t=tables.scalar(root, 0, N.Int64Flags),
        start_t=tables.scalar(root, 1, N.Int64Flags),
        end_t=tables.scalar(root, 2, N.Int64Flags),
        exposure_start_t=tables.scalar(root, 3, N.Int64Flags),
        exposure_end_t=tables.scalar(root, 4, N.Int64Flags),
        exposure=tables.scalar(root, 11, N.Int64Flags),
        format=frame_format,
        source=source,
        offset_x=tables.scalar(root, 8, N.Int16Flags),
        offset_y=tables.scalar(root, 9, N.Int16Flags),
        pixels=pixels.copy(),
    )


def _decode_imus(stream: StreamDescriptor, root: Table) -> ImuBatch:
    elements = tables.table_vector(root, 0, "imu")
    t = np.empty(len(elements), dtype=np.int64)
    values = np.zeros((len(elements), _IMU_FLOAT_FIELDS), dtype=np.float32)
    for i, imu in enumerate(elements):
        t[i] = tables.scalar(imu, 0, N.Int64Flags)
        for field in range(_IMU_FLOAT_FIELDS):
            values[i, field] = tables.scalar(imu, field + 1, N.Float32Flags, 0.0)
    return ImuBatch(
        t=t,
        temperature=values[:, 0].copy(),
        accelerometer=values[:, 1:4].copy(),
        gyroscope=values[:, 4:7].copy(),
        magnetometer=values[:, 7:10].copy(),
    )


def _decode_triggers(stream: StreamDescriptor, root: Table) -> TriggerBatch:
    elements = tables.table_vector(root, 0, "trigger")
    t = np.empty(len(elements), dtype=np.int64)
    source = np.empty(len(elements), dtype=np.int8)
    for i, trigger in enumerate(elements):
        t[i] = tables.scalar(trigger, 0, N.Int64Flags)
        source[i] = tables.scalar(trigger, 1, N.Int8Flags)
    return TriggerBatch(t=t, source=source)


_DECODERS: dict[StreamKind, Callable[[StreamDescriptor, Table], RecordBatch]] = {
    StreamKind.EVENTS: _decode_events,
    StreamKind.FRAME: _decode_frame,
    StreamKind.IMU: _decode_imus,
    StreamKind.TRIGGER: _decode_triggers,
}


def decode_payload(stream: StreamDescriptor, data: bytes | memoryview) -> RecordBatch:
    """Decode one decompressed packet of ``stream``.

    The returned arrays never alias ``data``.

    Raises:
        SchemaMismatchError: If the payload identifier or table layout does not fit the stream
        PayloadTruncatedError: If a declared size or array runs past the end of the buffer
        GeometryMismatchError: If a frame's size differs from the stream's sensor size
        CoordinateOutOfBoundsError: If an event lies outside the stream's sensor
    """
    decoder = _DECODERS.get(stream.kind)
    if decoder is None:
        raise SchemaMismatchError(
            f"stream {stream.id} has type {stream.type_identifier!r} which cannot be decoded"
        )
    root = tables.root_table(data, stream.kind.value, size_prefixed=True)
    try:
        return decoder(stream, root)
    except (struct.error, TypeError, IndexError, ValueError) as exc:
        raise SchemaMismatchError(
            f"malformed {stream.kind.value} payload in stream {stream.id}: {exc}"
        ) from exc


def batch_timestamps(batch: RecordBatch) -> np.ndarray:
    if isinstance(batch, Frame):
        return np.array([batch.t], dtype=np.int64)
    return batch.t


def first_regression(timestamps: np.ndarray) -> int | None:
    """Index of the first timestamp smaller than its predecessor, or None."""
    if len(timestamps) < 2:
        return None
    decreasing = np.flatnonzero(timestamps[1:] < timestamps[:-1])
    if len(decreasing) == 0:
        return None
    return int(decreasing[0]) + 1
