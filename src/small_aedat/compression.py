"""Packet body decompression.

Every AEDAT4 packet body is an independent compression unit, so each codec is a pure
``bytes -> bytes`` transform with no state carried between packets.
"""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Protocol

import lz4.frame
import zstandard

from small_aedat.exceptions import (
    AedatError,
    CodecFailureError,
    CorruptPayloadError,
    UnsupportedCompressionError,
)
from small_aedat.well_known import CompressionKind


class Codec(Protocol):
    name: str

    def decompress(
        self, data: bytes | memoryview, expected_size: int | None
    ) -> bytes | memoryview:
        """Decompress one block.

        ``expected_size`` is a hint, length validation is done by the registry.
        """
        ...


class NoneCodec:
    name = "none"

    def decompress(
        self, data: bytes | memoryview, expected_size: int | None
    ) -> bytes | memoryview:
        return data


class Lz4Codec:
    name = "lz4"

    def decompress(self, data: bytes | memoryview, expected_size: int | None) -> bytes:
        try:
            return lz4.frame.decompress(data)
        except RuntimeError as exc:
            raise CodecFailureError(self.name, exc) from exc


class ZstdCodec:
    name = "zstd"

    def decompress(self, data: bytes | memoryview, expected_size: int | None) -> bytes:
        # A fresh decompressor per block, ZstdDecompressor instances must not be shared
        # across threads.
        decompressor = zstandard.ZstdDecompressor()
        try:
            if zstandard.frame_content_size(data) >= 0:
                return decompressor.decompress(data)
            # Frames written without a content size cannot use the one-shot API.
            stream = decompressor.decompressobj()
            result = stream.decompress(data)
        except zstandard.ZstdError as exc:
            raise CodecFailureError(self.name, exc) from exc
        if not stream.eof:
            raise CodecFailureError(self.name, "incomplete frame")
        return result


class CodecRegistry:
    """Immutable mapping from compression kind to codec.

    Pass a custom registry to the decoder to add or replace codecs without touching
    the container reader.
    """

    def __init__(self, codecs: Mapping[CompressionKind, Codec]) -> None:
        self._codecs: Mapping[CompressionKind, Codec] = MappingProxyType(dict(codecs))

    def with_codec(self, kind: CompressionKind, codec: Codec) -> "CodecRegistry":
        return CodecRegistry({**self._codecs, kind: codec})

    def get(self, kind: CompressionKind) -> Codec:
        try:
            return self._codecs[kind]
        except KeyError:
            raise UnsupportedCompressionError(kind.value) from None

    def __contains__(self, kind: object) -> bool:
        return kind in self._codecs

    def decompress(
        self,
        kind: CompressionKind,
        data: bytes | memoryview,
        expected_size: int | None = None,
    ) -> bytes | memoryview:
        """Decompress ``data`` and check it against the declared uncompressed length.

        Raises:
            UnsupportedCompressionError: If no codec is registered for ``kind``
            CodecFailureError: If the codec rejects the block
            CorruptPayloadError: If the output length differs from ``expected_size``
        """
        codec = self.get(kind)
        try:
            result = codec.decompress(data, expected_size)
        except AedatError:
            raise
        except Exception as exc:
            # Third-party codecs raise their own exception types.
            raise CodecFailureError(codec.name, exc) from exc
        if expected_size is not None and len(result) != expected_size:
            raise CorruptPayloadError(expected_size, len(result))
        return result


DEFAULT_CODECS = CodecRegistry(
    {
        CompressionKind.NONE: NoneCodec(),
        CompressionKind.LZ4: Lz4Codec(),
        CompressionKind.ZSTD: ZstdCodec(),
    }
)


def decompress(
    kind: CompressionKind,
    data: bytes | memoryview,
    expected_size: int | None = None,
    *,
    registry: CodecRegistry = DEFAULT_CODECS,
) -> bytes | memoryview:
    return registry.decompress(kind, data, expected_size)
