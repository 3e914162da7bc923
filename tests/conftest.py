"""Shared pytest fixtures for small-aedat tests."""

import io

import pytest
from small_aedat import CompressionKind

from tests.fixtures.aedat_generator import AedatFileBuilder, ImuSample, StreamInfo

EVENTS_STREAM = StreamInfo(id=0, identifier="EVTS", width=4, height=4)
IMU_STREAM = StreamInfo(id=1, identifier="IMUS")
FRAME_STREAM = StreamInfo(id=2, identifier="FRME", width=2, height=2)
TRIGGER_STREAM = StreamInfo(id=3, identifier="TRIG")


@pytest.fixture
def two_stream_builder() -> AedatFileBuilder:
    """Events (4x4) and IMU streams with one packet each."""
    builder = AedatFileBuilder([EVENTS_STREAM, IMU_STREAM])
    builder.add_events(0, [(100, 1, 1, True), (101, 2, 2, False)])
    builder.add_imus(
        1,
        [
            ImuSample(
                t=150, accelerometer=(0.0, 0.0, 9.8), gyroscope=(0.0, 0.0, 0.0), temperature=25.0
            )
        ],
    )
    return builder


@pytest.fixture
def two_stream_file(two_stream_builder: AedatFileBuilder) -> io.BytesIO:
    return io.BytesIO(two_stream_builder.build())


@pytest.fixture
def seekable_builder() -> AedatFileBuilder:
    """Events and trigger streams, interleaved, with an index table.

    Event packets start at t=1000, 2000, 3000 and 4000, trigger packets at t=1500 and 3500.
    """
    builder = AedatFileBuilder(
        [EVENTS_STREAM, TRIGGER_STREAM], CompressionKind.LZ4, with_index=True
    )
    builder.add_events(0, [(1000, 0, 0, True), (1100, 1, 0, False)])
    builder.add_triggers(3, [(1500, 1)])
    builder.add_events(0, [(2000, 0, 1, True), (2100, 1, 1, True)])
    builder.add_events(0, [(3000, 2, 2, False)])
    builder.add_triggers(3, [(3500, 2)])
    builder.add_events(0, [(4000, 3, 3, True), (4200, 3, 2, True)])
    return builder


@pytest.fixture
def seekable_file(seekable_builder: AedatFileBuilder) -> io.BytesIO:
    return io.BytesIO(seekable_builder.build())
