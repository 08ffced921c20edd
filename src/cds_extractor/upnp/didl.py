"""DIDL-Lite decoder — turns Browse results into ListingEntry objects."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET

from cds_extractor.upnp.models import (
    DIDL_CONTAINER,
    DIDL_ID,
    DIDL_ITEM,
    DIDL_PARENT_ID,
    ListingEntry,
    Tag,
    TagMap,
)

logger = logging.getLogger(__name__)

# Prefixes DIDL-Lite documents conventionally bind; ElementTree only keeps URIs.
_NAMESPACE_PREFIXES = {
    "urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/": "",
    "http://purl.org/dc/elements/1.1/": "dc",
    "urn:schemas-upnp-org:metadata-1-0/upnp/": "upnp",
    "urn:schemas-dlna-org:metadata-1-0/": "dlna",
    "urn:schemas-sony-com:av": "av",
    "urn:schemas-arib-or-jp:elements-1-0/": "arib",
    "http://www.w3.org/XML/1998/namespace": "xml",
}


def qualified_name(tag: str) -> str:
    """Map ``{uri}local`` to the conventional ``prefix:local`` form."""
    if not tag.startswith("{"):
        return tag
    uri, _, local = tag[1:].partition("}")
    prefix = _NAMESPACE_PREFIXES.get(uri)
    if prefix is None:
        return local
    return f"{prefix}:{local}" if prefix else local


def _tag_from_element(element: ET.Element, root: bool = False) -> Tag:
    value = "" if root else "".join(element.itertext())
    attributes = {qualified_name(k): v for k, v in element.attrib.items()}
    return Tag(name=qualified_name(element.tag), value=value, attributes=attributes)


def _entry_from_element(udn: str, element: ET.Element) -> ListingEntry:
    """Build a ListingEntry from an ``item`` or ``container`` element.

    Raises:
        ValueError: If the element is not a DIDL object or has no id.
    """
    kind = qualified_name(element.tag)
    if kind not in (DIDL_ITEM, DIDL_CONTAINER):
        raise ValueError(f"unexpected DIDL-Lite element: {kind}")

    tags = TagMap()
    tags.put("", _tag_from_element(element, root=True))
    for child in element:
        tag = _tag_from_element(child)
        tags.put(tag.name, tag)

    object_id = tags.get_value(DIDL_ID)
    if not object_id:
        raise ValueError(f"{kind} element has no id attribute")
    return ListingEntry(
        udn=udn,
        object_id=object_id,
        parent_id=tags.get_value(DIDL_PARENT_ID) or "",
        is_container=kind == DIDL_CONTAINER,
        tags=tags,
    )


def parse_direct_children(udn: str, xml: str | None) -> list[ListingEntry]:
    """Decode a BrowseDirectChildren result.

    Args:
        udn: UDN of the MediaServer the result came from.
        xml: DIDL-Lite document from the Browse ``Result`` argument.

    Returns:
        Entries in document order; empty when nothing matched or the document
        cannot be parsed.
    """
    if not xml:
        return []
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as exc:
        logger.warning("[parse_direct_children] malformed DIDL-Lite; udn:%s;error:%s", udn, exc)
        return []

    entries: list[ListingEntry] = []
    for element in root:
        try:
            entries.append(_entry_from_element(udn, element))
        except ValueError as exc:
            logger.warning("[parse_direct_children] skipping object; udn:%s;reason:%s", udn, exc)
    return entries
