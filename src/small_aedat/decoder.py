import logging
import os
from collections.abc import Callable
from enum import Enum
from functools import cached_property
from types import TracebackType
from typing import IO

from small_aedat.compression import DEFAULT_CODECS, CodecRegistry
from small_aedat.exceptions import DiagnosticError
from small_aedat.payloads import batch_timestamps, decode_payload, first_regression
from small_aedat.reader import ContainerReader
from small_aedat.records import (
    DescriptionNode,
    Diagnostic,
    FileDataDefinition,
    FileIndex,
    Packet,
    PacketHeader,
    RecordBatch,
    StreamDescriptor,
)
from small_aedat.schema import parse_description_tree
from small_aedat.well_known import DiagnosticKind, StreamKind

logger = logging.getLogger(__name__)

DiagnosticHandler = Callable[[Diagnostic], None]


class DecoderState(Enum):
    UNOPENED = "unopened"
    READY = "ready"
    EXHAUSTED = "exhausted"
    FAULTED = "faulted"


class Decoder:
    """Pull-based AEDAT4 decoder yielding one typed :class:`Packet` per container record.

    Packets come out in file order. Each call to :meth:`next_packet` reads, decompresses
    and decodes exactly one record. Any error moves the decoder to ``FAULTED`` and every
    later call raises that same error again. A decoder instance must not be shared
    between threads; open one decoder per thread instead.

    Example::

        with Decoder.open("recording.aedat4") as decoder:
            for packet in decoder:
                if packet.kind is StreamKind.EVENTS:
                    handle(packet.batch.t, packet.batch.x, packet.batch.y)

    Args:
        source: Path of an AEDAT4 file, or a binary file object opened by the caller
        codecs: Codec registry used for packet bodies and the index table
        strict: Raise :class:`DiagnosticError` instead of only reporting diagnostics
        on_diagnostic: Called with every diagnostic, in addition to :attr:`diagnostics`
        collect_diagnostics: Keep every diagnostic in :attr:`diagnostics`. The list grows
            for the whole session, so long recordings handled through ``on_diagnostic``
            may turn it off
    """

    def __init__(
        self,
        source: str | os.PathLike[str] | IO[bytes],
        *,
        codecs: CodecRegistry = DEFAULT_CODECS,
        strict: bool = False,
        on_diagnostic: DiagnosticHandler | None = None,
        collect_diagnostics: bool = True,
    ) -> None:
        self.state = DecoderState.UNOPENED
        self._codecs = codecs
        self._strict = strict
        self._on_diagnostic = on_diagnostic
        self._collect_diagnostics = collect_diagnostics
        self._fault: Exception | None = None
        self._last_timestamps: dict[int, int] = {}
        self.diagnostics: list[Diagnostic] = []

        self._owns_file = isinstance(source, (str, os.PathLike))
        self._file: IO[bytes] = open(source, "rb") if self._owns_file else source  # noqa: SIM115
        try:
            self._reader = ContainerReader(self._file, codecs=codecs)
        except BaseException:
            self.close()
            raise
        self.state = DecoderState.READY

    @classmethod
    def open(
        cls,
        source: str | os.PathLike[str] | IO[bytes],
        *,
        codecs: CodecRegistry = DEFAULT_CODECS,
        strict: bool = False,
        on_diagnostic: DiagnosticHandler | None = None,
        collect_diagnostics: bool = True,
    ) -> "Decoder":
        return cls(
            source,
            codecs=codecs,
            strict=strict,
            on_diagnostic=on_diagnostic,
            collect_diagnostics=collect_diagnostics,
        )

    def close(self) -> None:
        if self._owns_file:
            self._file.close()

    def __enter__(self) -> "Decoder":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def __iter__(self) -> "Decoder":
        return self

    def __next__(self) -> Packet:
        packet = self.next_packet()
        if packet is None:
            raise StopIteration
        return packet

    def streams(self) -> tuple[StreamDescriptor, ...]:
        return self._reader.streams

    def stream(self, stream_id: int) -> StreamDescriptor:
        return self._reader.stream(stream_id)

    @cached_property
    def description(self) -> tuple[DescriptionNode, ...]:
        assert self._reader.header.description is not None
        return parse_description_tree(self._reader.header.description)

    @property
    def file_index(self) -> FileIndex | None:
        return self._reader.file_index

    def file_data_definitions(self) -> tuple[FileDataDefinition, ...]:
        index = self._reader.file_index
        return index.definitions if index is not None else ()

    def next_packet(self) -> Packet | None:
        """Decode the next packet.

        Returns:
            The packet, or None at end of stream

        Raises:
            AedatError: The error that faulted the decoder, now or on an earlier call. An
                exception raised by the ``on_diagnostic`` callback faults the decoder too
        """
        if self.state is DecoderState.FAULTED:
            assert self._fault is not None
            raise self._fault
        if self.state is DecoderState.EXHAUSTED:
            return None

        try:
            while (record := self._reader.next_record()) is not None:
                header, body = record
                stream = self._reader.stream(header.stream_id)
                data = self._codecs.decompress(header.compression, body, header.uncompressed_size)
                if stream.kind is StreamKind.UNKNOWN:
                    self._report(
                        DiagnosticKind.UNKNOWN_STREAM_SKIPPED,
                        header,
                        f"skipped packet of stream {stream.id} with unsupported type "
                        f"{stream.type_identifier!r} at offset {header.offset}",
                        bytes(data),
                    )
                    continue
                batch = decode_payload(stream, data)
                self._check_timestamps(header, batch)
                return Packet(stream.id, stream.kind, batch, header)
        except Exception as exc:
            self._fault = exc
            self.state = DecoderState.FAULTED
            logger.debug(f"Decoder faulted: {exc}")
            raise

        self.state = DecoderState.EXHAUSTED
        return None

    def seek(self, stream_id: int, timestamp: int) -> int:
        """Resume decoding at the packet of ``stream_id`` covering ``timestamp``.

        Packets of every stream are yielded again from that record on, in file order.

        Returns:
            The byte offset of the record decoding resumes from

        Raises:
            SeekUnsupportedError: If the file has no index table
            UnknownSeekStreamError: If the stream has no indexed packets
        """
        self._check_not_faulted()
        offset = self._reader.seek(stream_id, timestamp)
        self._resume()
        return offset

    def seek_to_offset(self, offset: int) -> None:
        """Resume decoding at a record offset, typically one of :meth:`file_data_definitions`."""
        self._check_not_faulted()
        self._reader.seek_to_offset(offset)
        self._resume()

    def _check_not_faulted(self) -> None:
        if self.state is DecoderState.FAULTED:
            assert self._fault is not None
            raise self._fault

    def _resume(self) -> None:
        self._last_timestamps.clear()
        self.state = DecoderState.READY

    def _check_timestamps(self, header: PacketHeader, batch: RecordBatch) -> None:
        timestamps = batch_timestamps(batch)
        if len(timestamps) == 0:
            return
        regression = first_regression(timestamps)
        if regression is not None:
            self._report(
                DiagnosticKind.TIMESTAMP_REGRESSION,
                header,
                f"stream {header.stream_id} timestamp decreases inside the packet at "
                f"offset {header.offset}: element {regression} has t={timestamps[regression]} "
                f"after t={timestamps[regression - 1]}",
            )
        previous = self._last_timestamps.get(header.stream_id)
        if previous is not None and timestamps[0] < previous:
            self._report(
                DiagnosticKind.TIMESTAMP_REGRESSION,
                header,
                f"stream {header.stream_id} timestamp goes back from t={previous} to "
                f"t={timestamps[0]} at offset {header.offset}",
            )
        self._last_timestamps[header.stream_id] = int(timestamps[-1])

    def _report(
        self,
        kind: DiagnosticKind,
        header: PacketHeader,
        message: str,
        body: bytes | None = None,
    ) -> None:
        diagnostic = Diagnostic(kind, header.stream_id, header.offset, message, body)
        if self._collect_diagnostics:
            self.diagnostics.append(diagnostic)
        logger.warning(message)
        if self._on_diagnostic is not None:
            self._on_diagnostic(diagnostic)
        if self._strict:
            raise DiagnosticError(diagnostic)
