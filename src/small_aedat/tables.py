"""Bounds-checked access to flatbuffer tables.

AEDAT4 stores its file header, its index table and every packet payload as flatbuffers.
The helpers here wrap :class:`flatbuffers.table.Table` so that a corrupt buffer surfaces
as a :class:`PayloadError` instead of a bare ``struct.error``.
"""

import struct

from flatbuffers import encode, number_types
from flatbuffers.table import Table

from small_aedat.exceptions import PayloadTruncatedError, SchemaMismatchError

_UOFFSET_SIZE = number_types.UOffsetTFlags.bytewidth
_IDENTIFIER_SIZE = 4
_SIZE_PREFIX = struct.Struct("<I")


def _slot(index: int) -> int:
    return 4 + 2 * index


def root_table(
    data: bytes | memoryview,
    identifier: str | None = None,
    *,
    size_prefixed: bool = False,
) -> Table:
    """Locate the root table of a flatbuffer.

    Args:
        data: The serialized buffer
        identifier: Expected four-character file identifier, or None to skip the check
        size_prefixed: Whether the buffer starts with a uint32 byte length

    Returns:
        A table positioned on the root object. Its ``Bytes`` are limited to the
        declared size for size-prefixed buffers.

    Raises:
        PayloadTruncatedError: If the buffer is shorter than its size prefix or root offset
        SchemaMismatchError: If the file identifier does not match
    """
    view = memoryview(data)
    offset = 0
    if size_prefixed:
        if len(view) < _SIZE_PREFIX.size:
            raise PayloadTruncatedError("size prefix", _SIZE_PREFIX.size, len(view))
        (size,) = _SIZE_PREFIX.unpack_from(view, 0)
        offset = _SIZE_PREFIX.size
        if offset + size > len(view):
            raise PayloadTruncatedError("size-prefixed table", offset + size, len(view))
        view = view[: offset + size]

    header_size = _UOFFSET_SIZE + (_IDENTIFIER_SIZE if identifier is not None else 0)
    if offset + header_size > len(view):
        raise PayloadTruncatedError("root table offset", offset + header_size, len(view))

    if identifier is not None:
        start = offset + _UOFFSET_SIZE
        found = bytes(view[start : start + _IDENTIFIER_SIZE])
        if found != identifier.encode("ascii"):
            raise SchemaMismatchError(
                f"expected a {identifier} table, found identifier "
                f"{found.decode('ascii', 'replace')!r}"
            )

    position = offset + encode.Get(number_types.UOffsetTFlags.packer_type, view, offset)
    if position >= len(view):
        raise PayloadTruncatedError("root table", position + 1, len(view))
    return Table(view, position)


def scalar(table: Table, index: int, flags: type, default: int | float | bool = 0):
    o = table.Offset(_slot(index))
    if o == 0:
        return default
    return table.Get(flags, o + table.Pos)


def string(table: Table, index: int) -> str | None:
    o = table.Offset(_slot(index))
    if o == 0:
        return None
    start = table.Vector(o)
    end = start + table.VectorLen(o)
    if end > len(table.Bytes):
        raise PayloadTruncatedError("string", end, len(table.Bytes))
    return bytes(table.Bytes[start:end]).decode("utf-8")


def vector(table: Table, index: int, element_size: int, what: str) -> tuple[int, int]:
    """Return ``(start, length)`` of a vector field, checked against the buffer end."""
    o = table.Offset(_slot(index))
    if o == 0:
        return 0, 0
    start = table.Vector(o)
    length = table.VectorLen(o)
    end = start + length * element_size
    if end > len(table.Bytes):
        raise PayloadTruncatedError(f"{what} array of {length} elements", end, len(table.Bytes))
    return start, length


def table_vector(table: Table, index: int, what: str) -> list[Table]:
    start, length = vector(table, index, _UOFFSET_SIZE, what)
    return [
        Table(table.Bytes, table.Indirect(start + i * _UOFFSET_SIZE)) for i in range(length)
    ]


def struct_field(table: Table, index: int, layout: struct.Struct) -> tuple | None:
    o = table.Offset(_slot(index))
    if o == 0:
        return None
    position = o + table.Pos
    if position + layout.size > len(table.Bytes):
        raise PayloadTruncatedError("inline struct", position + layout.size, len(table.Bytes))
    return layout.unpack_from(table.Bytes, position)
