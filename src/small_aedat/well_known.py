from enum import Enum, IntEnum, unique


MAGIC = b"#!AER-DAT4.0\r\n"
MAGIC_SIZE = len(MAGIC)
MAGIC_PREFIX = b"#!AER-DAT"


class StreamKind(Enum):
    """Stream types by their four-character flatbuffer identifier."""

    EVENTS = "EVTS"
    FRAME = "FRME"
    IMU = "IMUS"
    TRIGGER = "TRIG"
    UNKNOWN = ""

    @classmethod
    def from_identifier(cls, identifier: str) -> "StreamKind":
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == identifier:
                return kind
        return cls.UNKNOWN

    @property
    def has_geometry(self) -> bool:
        return self in (StreamKind.EVENTS, StreamKind.FRAME)


class CompressionKind(Enum):
    NONE = "none"
    LZ4 = "lz4"
    ZSTD = "zstd"


# IOHeader compression ids. The *_HIGH variants only change the encoder level.
COMPRESSION_IDS: dict[int, CompressionKind] = {
    0: CompressionKind.NONE,
    1: CompressionKind.LZ4,
    2: CompressionKind.LZ4,
    3: CompressionKind.ZSTD,
    4: CompressionKind.ZSTD,
}


@unique
class Polarity(IntEnum):
    OFF = 0
    ON = 1


@unique
class FrameFormat(IntEnum):
    GRAY = 0
    BGR = 16
    BGRA = 24

    @property
    def channels(self) -> int:
        return {FrameFormat.GRAY: 1, FrameFormat.BGR: 3, FrameFormat.BGRA: 4}[self]


@unique
class FrameSource(IntEnum):
    UNDEFINED = 0
    SENSOR = 1
    ACCUMULATION = 2
    MOTION_COMPENSATION = 3
    SYNTHETIC = 4
    RECONSTRUCTION = 5
    VISUALIZATION = 6
    OTHER = 7


@unique
class TriggerSource(IntEnum):
    TIMESTAMP_RESET = 0
    EXTERNAL_SIGNAL_RISING_EDGE = 1
    EXTERNAL_SIGNAL_FALLING_EDGE = 2
    EXTERNAL_SIGNAL_PULSE = 3
    EXTERNAL_GENERATOR_RISING_EDGE = 4
    EXTERNAL_GENERATOR_FALLING_EDGE = 5
    APS_FRAME_START = 6
    APS_FRAME_END = 7
    APS_EXPOSURE_START = 8
    APS_EXPOSURE_END = 9


class DiagnosticKind(Enum):
    UNKNOWN_STREAM_SKIPPED = "unknown_stream_skipped"
    TIMESTAMP_REGRESSION = "timestamp_regression"
