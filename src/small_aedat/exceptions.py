from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from small_aedat.records import Diagnostic


class AedatError(Exception):
    pass


class FormatError(AedatError):
    pass


class NotAedat4Error(FormatError):
    def __init__(self, bad_magic: bytes | memoryview) -> None:
        super().__init__(
            "the file does not contain AEDAT4 data, invalid magic: "
            f"{bytes(bad_magic).decode('utf-8', 'replace')!r}"
        )


class UnsupportedVersionError(FormatError):
    def __init__(self, version: str) -> None:
        super().__init__(f"unsupported AEDAT version {version}, only 4.0 can be decoded")


class SchemaError(AedatError):
    pass


class MalformedSchemaError(SchemaError):
    pass


class DuplicateStreamIdError(SchemaError):
    def __init__(self, stream_id: int) -> None:
        super().__init__(f"duplicated stream id {stream_id} in the description")


class ReadError(AedatError):
    pass


class TruncatedRecordError(ReadError):
    def __init__(self, offset: int, expected: int, actual: int) -> None:
        super().__init__(
            f"truncated record at offset {offset}: expected {expected} bytes, got {actual}"
        )
        self.offset = offset


class UnknownStreamIdError(ReadError):
    def __init__(self, stream_id: int, offset: int) -> None:
        super().__init__(f"packet at offset {offset} references unknown stream id {stream_id}")


class CodecError(AedatError):
    pass


class CorruptPayloadError(CodecError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"declared uncompressed length {expected} does not match actual length {actual}"
        )


class CodecFailureError(CodecError):
    def __init__(self, codec: str, reason: object) -> None:
        super().__init__(f"{codec} decompression failed: {reason}")
        self.codec = codec


class UnsupportedCompressionError(CodecError):
    def __init__(self, compression: object) -> None:
        super().__init__(f"unsupported compression type {compression}")


class PayloadError(AedatError):
    pass


class SchemaMismatchError(PayloadError):
    pass


class PayloadTruncatedError(PayloadError):
    def __init__(self, what: str, needed: int, available: int) -> None:
        super().__init__(f"{what} needs {needed} bytes but only {available} are available")


class GeometryMismatchError(PayloadError):
    def __init__(self, stream_id: int, declared: tuple[int, int], actual: tuple[int, int]) -> None:
        super().__init__(
            f"stream {stream_id} declares a {declared[0]}x{declared[1]} sensor "
            f"but the packet carries {actual[0]}x{actual[1]}"
        )


class CoordinateOutOfBoundsError(PayloadError):
    def __init__(self, stream_id: int, index: int, x: int, y: int, size: tuple[int, int]) -> None:
        super().__init__(
            f"event {index} of stream {stream_id} at ({x}, {y}) "
            f"lies outside the {size[0]}x{size[1]} sensor"
        )


class SeekError(AedatError):
    pass


class SeekUnsupportedError(SeekError):
    def __init__(
        self, reason: str = "seeking requires a trailing index table, this file has none"
    ) -> None:
        super().__init__(reason)


class UnknownSeekStreamError(SeekError):
    def __init__(self, stream_id: int) -> None:
        super().__init__(f"stream {stream_id} has no entries in the index table")


class DiagnosticError(AedatError):
    def __init__(self, diagnostic: "Diagnostic") -> None:
        super().__init__(diagnostic.message)
        self.diagnostic = diagnostic
