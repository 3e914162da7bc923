"""Parse the XML stream description embedded in the IOHeader.

The description is a DV configuration tree. Streams live under ``/dv/outInfo``, one
``<node>`` per stream, named after the stream id::

    <dv version="2.0">
        <node name="outInfo" path="/mainloop/Recorder/outInfo/">
            <node name="0" path="/mainloop/Recorder/outInfo/0/">
                <attr key="typeIdentifier" type="string">EVTS</attr>
                <node name="info" path="/mainloop/Recorder/outInfo/0/info/">
                    <attr key="sizeX" type="int">346</attr>
                    <attr key="sizeY" type="int">260</attr>
                </node>
            </node>
        </node>
    </dv>
"""

import logging
import xml.etree.ElementTree as ET

from small_aedat.exceptions import DuplicateStreamIdError, MalformedSchemaError
from small_aedat.records import DescriptionAttribute, DescriptionNode, StreamDescriptor
from small_aedat.well_known import StreamKind

logger = logging.getLogger(__name__)

_INTEGER_ATTRIBUTE_TYPES = frozenset({"int", "long", "short", "byte"})


def _parse_root(markup: str) -> ET.Element:
    try:
        root = ET.fromstring(markup)
    except ET.ParseError as exc:
        raise MalformedSchemaError(f"the description is not valid XML: {exc}") from exc
    if root.tag != "dv":
        raise MalformedSchemaError(f"unexpected root tag {root.tag!r}, expected 'dv'")
    return root


def _child_node(element: ET.Element, name: str) -> ET.Element | None:
    for child in element:
        if child.tag == "node" and child.get("name") == name:
            return child
    return None


def _attributes(element: ET.Element) -> list[tuple[str, str]]:
    return [
        (child.get("key", ""), (child.text or "").strip())
        for child in element
        if child.tag == "attr" and child.get("key")
    ]


def _dimension(attributes: dict[str, str], key: str, stream_id: int) -> int:
    raw = attributes.get(key)
    if raw is None:
        raise MalformedSchemaError(f"stream {stream_id} is missing the {key} attribute")
    try:
        value = int(raw)
    except ValueError:
        raise MalformedSchemaError(
            f"stream {stream_id} has a non-integer {key} attribute: {raw!r}"
        ) from None
    if not 0 < value <= 0x7FFF:
        raise MalformedSchemaError(f"stream {stream_id} has an invalid {key} of {value}")
    return value


def _stream(element: ET.Element, position: int) -> StreamDescriptor:
    name = element.get("name")
    if name is None:
        stream_id = position
    else:
        try:
            stream_id = int(name)
        except ValueError:
            raise MalformedSchemaError(f"stream node name {name!r} is not an integer") from None

    own_attributes = _attributes(element)
    identifier = dict(own_attributes).get("typeIdentifier")
    if not identifier:
        raise MalformedSchemaError(f"stream {stream_id} has no typeIdentifier attribute")

    info = _child_node(element, "info")
    info_attributes = _attributes(info) if info is not None else []
    kind = StreamKind.from_identifier(identifier)

    width = height = 0
    if kind.has_geometry:
        if info is None:
            raise MalformedSchemaError(f"stream {stream_id} ({identifier}) has no info node")
        lookup = dict(info_attributes)
        width = _dimension(lookup, "sizeX", stream_id)
        height = _dimension(lookup, "sizeY", stream_id)

    return StreamDescriptor(
        id=stream_id,
        kind=kind,
        type_identifier=identifier,
        width=width,
        height=height,
        attributes=tuple(own_attributes + info_attributes),
    )


def parse_description(markup: str) -> tuple[StreamDescriptor, ...]:
    """Parse the stream descriptors, in document order.

    Streams with a type identifier this package does not decode are kept with
    :attr:`StreamKind.UNKNOWN` so the other streams of the file stay readable.

    Raises:
        MalformedSchemaError: If the markup or a stream node is invalid, or no stream is declared
        DuplicateStreamIdError: If two stream nodes share an id
    """
    root = _parse_root(markup)
    output = _child_node(root, "outInfo")
    if output is None:
        raise MalformedSchemaError("the description has no outInfo node")

    streams: list[StreamDescriptor] = []
    seen: set[int] = set()
    for position, element in enumerate(child for child in output if child.tag == "node"):
        stream = _stream(element, position)
        if stream.id in seen:
            raise DuplicateStreamIdError(stream.id)
        seen.add(stream.id)
        if stream.kind is StreamKind.UNKNOWN:
            logger.debug(f"Stream {stream.id} has unsupported type {stream.type_identifier}")
        streams.append(stream)

    if not streams:
        raise MalformedSchemaError("no stream found in the description")
    return tuple(streams)


def _description_node(element: ET.Element) -> DescriptionNode:
    attributes: list[tuple[str, DescriptionAttribute]] = []
    for child in element:
        if child.tag != "attr":
            continue
        attribute_type = child.get("type", "string")
        text = (child.text or "").strip()
        value: str | int = text
        if attribute_type in _INTEGER_ATTRIBUTE_TYPES:
            try:
                value = int(text)
            except ValueError:
                raise MalformedSchemaError(
                    f"attribute {child.get('key')!r} of type {attribute_type} has value {text!r}"
                ) from None
        attributes.append((child.get("key", ""), DescriptionAttribute(attribute_type, value)))
    return DescriptionNode(
        name=element.get("name", ""),
        path=element.get("path", ""),
        attributes=tuple(attributes),
        nodes=tuple(_description_node(child) for child in element if child.tag == "node"),
    )


def parse_description_tree(markup: str) -> tuple[DescriptionNode, ...]:
    """Parse the whole description into immutable nodes, one per child of ``<dv>``."""
    root = _parse_root(markup)
    return tuple(_description_node(child) for child in root if child.tag == "node")
