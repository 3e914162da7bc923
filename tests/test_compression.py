"""Tests for the codec layer."""

import lz4.frame
import pytest
import zstandard
from small_aedat import (
    DEFAULT_CODECS,
    CodecFailureError,
    CodecRegistry,
    CompressionKind,
    CorruptPayloadError,
    NoneCodec,
    UnsupportedCompressionError,
    decompress,
)

from tests.fixtures.aedat_generator import compress

PAYLOAD = bytes(range(256)) * 40


@pytest.mark.parametrize("kind", list(CompressionKind))
def test_decompress_yields_declared_length(kind):
    """Decompressing a block declared as L bytes yields exactly L bytes."""
    block = compress(kind, PAYLOAD)
    result = decompress(kind, block, len(PAYLOAD))
    assert len(result) == len(PAYLOAD)
    assert bytes(result) == PAYLOAD


def test_none_is_identity():
    assert decompress(CompressionKind.NONE, PAYLOAD) is PAYLOAD


@pytest.mark.parametrize("kind", list(CompressionKind))
def test_length_mismatch_is_corrupt_payload(kind):
    block = compress(kind, PAYLOAD)
    with pytest.raises(CorruptPayloadError, match=f"{len(PAYLOAD) + 1}"):
        decompress(kind, block, len(PAYLOAD) + 1)


@pytest.mark.parametrize(
    ("kind", "codec_name"),
    [(CompressionKind.LZ4, "lz4"), (CompressionKind.ZSTD, "zstd")],
)
def test_malformed_block_reports_codec(kind, codec_name):
    with pytest.raises(CodecFailureError) as exc_info:
        decompress(kind, b"\x00definitely not compressed\xff")
    assert exc_info.value.codec == codec_name
    assert codec_name in str(exc_info.value)


def test_zstd_frame_without_content_size():
    block = zstandard.ZstdCompressor(write_content_size=False).compress(PAYLOAD)
    assert zstandard.frame_content_size(block) == -1
    assert decompress(CompressionKind.ZSTD, block) == PAYLOAD


def test_truncated_zstd_frame_without_content_size():
    block = zstandard.ZstdCompressor(write_content_size=False).compress(PAYLOAD)

    with pytest.raises(CodecFailureError, match="zstd decompression failed"):
        decompress(CompressionKind.ZSTD, block[: len(block) // 2])


def test_lz4_accepts_memoryview():
    block = lz4.frame.compress(PAYLOAD)
    assert decompress(CompressionKind.LZ4, memoryview(block)) == PAYLOAD


def test_missing_codec_is_unsupported():
    registry = CodecRegistry({CompressionKind.NONE: NoneCodec()})
    assert CompressionKind.LZ4 not in registry
    with pytest.raises(UnsupportedCompressionError, match="lz4"):
        registry.decompress(CompressionKind.LZ4, b"")


def test_with_codec_replaces_without_mutating_default(mocker):
    codec = mocker.Mock()
    codec.name = "custom"
    codec.decompress.return_value = b"custom output"

    registry = DEFAULT_CODECS.with_codec(CompressionKind.ZSTD, codec)

    assert registry.decompress(CompressionKind.ZSTD, b"input") == b"custom output"
    codec.decompress.assert_called_once_with(b"input", None)
    assert DEFAULT_CODECS.get(CompressionKind.ZSTD) is not codec


def test_foreign_codec_error_is_codec_failure(mocker):
    codec = mocker.Mock()
    codec.name = "custom"
    codec.decompress.side_effect = ValueError("bad block")
    registry = DEFAULT_CODECS.with_codec(CompressionKind.LZ4, codec)

    with pytest.raises(CodecFailureError, match="custom decompression failed") as exc_info:
        registry.decompress(CompressionKind.LZ4, b"input")
    assert exc_info.value.codec == "custom"
    assert isinstance(exc_info.value.__cause__, ValueError)
