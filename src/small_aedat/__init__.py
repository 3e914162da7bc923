"""Small-aedat: A lightweight Python decoder for AEDAT4 files.

AEDAT4 is the container format of DV event-camera recordings. A file multiplexes event,
frame, IMU and trigger streams, each stored as independently compressed packets.
"""

from small_aedat.compression import (
    DEFAULT_CODECS,
    Codec,
    CodecRegistry,
    Lz4Codec,
    NoneCodec,
    ZstdCodec,
    decompress,
)
from small_aedat.decoder import Decoder, DecoderState, DiagnosticHandler
from small_aedat.exceptions import (
    AedatError,
    CodecError,
    CodecFailureError,
    CoordinateOutOfBoundsError,
    CorruptPayloadError,
    DiagnosticError,
    DuplicateStreamIdError,
    FormatError,
    GeometryMismatchError,
    MalformedSchemaError,
    NotAedat4Error,
    PayloadError,
    PayloadTruncatedError,
    ReadError,
    SchemaError,
    SchemaMismatchError,
    SeekError,
    SeekUnsupportedError,
    TruncatedRecordError,
    UnknownSeekStreamError,
    UnknownStreamIdError,
    UnsupportedCompressionError,
    UnsupportedVersionError,
)
from small_aedat.payloads import decode_payload
from small_aedat.reader import ContainerReader
from small_aedat.records import (
    DescriptionAttribute,
    DescriptionNode,
    Diagnostic,
    EventBatch,
    FileDataDefinition,
    FileIndex,
    Frame,
    ImuBatch,
    IOHeader,
    Packet,
    PacketHeader,
    RecordBatch,
    StreamDescriptor,
    TriggerBatch,
)
from small_aedat.schema import parse_description, parse_description_tree
from small_aedat.well_known import (
    MAGIC,
    CompressionKind,
    DiagnosticKind,
    FrameFormat,
    FrameSource,
    Polarity,
    StreamKind,
    TriggerSource,
)

__all__ = [
    "DEFAULT_CODECS",
    "MAGIC",
    "AedatError",
    "Codec",
    "CodecError",
    "CodecFailureError",
    "CodecRegistry",
    "CompressionKind",
    "ContainerReader",
    "CoordinateOutOfBoundsError",
    "CorruptPayloadError",
    "Decoder",
    "DecoderState",
    "DescriptionAttribute",
    "DescriptionNode",
    "Diagnostic",
    "DiagnosticError",
    "DiagnosticHandler",
    "DiagnosticKind",
    "DuplicateStreamIdError",
    "EventBatch",
    "FileDataDefinition",
    "FileIndex",
    "FormatError",
    "Frame",
    "FrameFormat",
    "FrameSource",
    "GeometryMismatchError",
    "IOHeader",
    "ImuBatch",
    "Lz4Codec",
    "MalformedSchemaError",
    "NoneCodec",
    "NotAedat4Error",
    "Packet",
    "PacketHeader",
    "PayloadError",
    "PayloadTruncatedError",
    "Polarity",
    "ReadError",
    "RecordBatch",
    "SchemaError",
    "SchemaMismatchError",
    "SeekError",
    "SeekUnsupportedError",
    "StreamDescriptor",
    "StreamKind",
    "TriggerBatch",
    "TriggerSource",
    "TruncatedRecordError",
    "UnknownSeekStreamError",
    "UnknownStreamIdError",
    "UnsupportedCompressionError",
    "UnsupportedVersionError",
    "ZstdCodec",
    "decode_payload",
    "decompress",
    "parse_description",
    "parse_description_tree",
]
