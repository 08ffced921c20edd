"""Data models for UPnP devices, ContentDirectory objects and Browse pages."""

from __future__ import annotations

from dataclasses import dataclass, field

# Device description element names
DESC_URL_BASE = "URLBase"
DESC_DEVICE = "device"
DESC_DEVICE_TYPE = "deviceType"
DESC_FRIENDLY_NAME = "friendlyName"
DESC_UDN = "UDN"
DESC_SERVICE_LIST = "serviceList"
DESC_SERVICE = "service"
DESC_SERVICE_TYPE = "serviceType"
DESC_SERVICE_ID = "serviceId"
DESC_SCPD_URL = "SCPDURL"
DESC_CONTROL_URL = "controlURL"
SCPD_ACTION = "action"
SCPD_NAME = "name"

# ContentDirectory identifiers
MS_DEVICE_TYPE = "urn:schemas-upnp-org:device:MediaServer"
CDS_SERVICE_ID = "urn:upnp-org:serviceId:ContentDirectory"
ACTION_BROWSE = "Browse"

# Browse action arguments
ARG_OBJECT_ID = "ObjectID"
ARG_BROWSE_FLAG = "BrowseFlag"
ARG_FILTER = "Filter"
ARG_STARTING_INDEX = "StartingIndex"
ARG_REQUESTED_COUNT = "RequestedCount"
ARG_SORT_CRITERIA = "SortCriteria"
BROWSE_DIRECT_CHILDREN = "BrowseDirectChildren"

# Browse action results
RESULT_RESULT = "Result"
RESULT_NUMBER_RETURNED = "NumberReturned"
RESULT_TOTAL_MATCHES = "TotalMatches"
RESULT_UPDATE_ID = "UpdateID"

# DIDL-Lite names
DIDL_ITEM = "item"
DIDL_CONTAINER = "container"
DIDL_ID = "@id"
DIDL_PARENT_ID = "@parentID"
DIDL_TITLE = "dc:title"
DIDL_CLASS = "upnp:class"


@dataclass
class Tag:
    """Flat view of one non-nested XML element: name, text and attributes."""

    name: str
    value: str
    attributes: dict[str, str] = field(default_factory=dict)

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)


class TagMap:
    """Ordered multimap of tag name to the tags of one DIDL-Lite object.

    The object element itself (``item`` or ``container``) is stored under the
    empty name, so its attributes are addressed as ``"@id"``. Child elements
    keep their qualified name (``"dc:title"``, ``"res@protocolInfo"``).
    Repeated tags are indexed in document order.
    """

    def __init__(self) -> None:
        self._map: dict[str, list[Tag]] = {}

    def put(self, name: str, tag: Tag) -> None:
        self._map.setdefault(name, []).append(tag)

    def get_tags(self, name: str) -> list[Tag]:
        return list(self._map.get(name, []))

    def get_value(self, xpath: str, index: int = 0) -> str | None:
        """Return the value addressed by an XPath-like key.

        Args:
            xpath: ``"tag"`` for element text, ``"tag@attr"`` for an attribute,
                ``"@attr"`` for an attribute of the object element.
            index: Occurrence of the tag when it appears more than once.

        Returns:
            The value, or None if the tag, occurrence or attribute is missing.
        """
        tag_name, _, attr_name = xpath.partition("@")
        tags = self._map.get(tag_name, [])
        if index < 0 or index >= len(tags):
            return None
        tag = tags[index]
        if attr_name:
            return tag.get_attribute(attr_name)
        return tag.value

    def __contains__(self, name: object) -> bool:
        return name in self._map

    def __len__(self) -> int:
        return len(self._map)


@dataclass
class ListingEntry:
    """One child of a ContentDirectory container (an item or a sub-container)."""

    udn: str
    object_id: str
    parent_id: str
    is_container: bool
    tags: TagMap = field(default_factory=TagMap, repr=False)

    def get_value(self, xpath: str, index: int = 0) -> str | None:
        return self.tags.get_value(xpath, index)

    @property
    def title(self) -> str:
        return self.tags.get_value(DIDL_TITLE) or ""

    @property
    def upnp_class(self) -> str:
        return self.tags.get_value(DIDL_CLASS) or ""


@dataclass
class BrowseResponse:
    """Output arguments of one Browse action invocation."""

    result: str
    number_returned: int
    total_matches: int
    update_id: int


@dataclass
class Page:
    """One server response covering a contiguous slice of a container's children.

    Attributes:
        entries: Decoded children in server order.
        start: Zero-based offset of the first entry in the full listing.
        count: Number of entries the server declared it returned.
        total: Server-declared size of the full listing at fetch time.
        raw: Verbatim DIDL-Lite payload, archived as-is.
    """

    entries: list[ListingEntry]
    start: int
    count: int
    total: int
    raw: str

    @property
    def end(self) -> int:
        return self.start + self.count - 1

    @property
    def covers_whole_listing(self) -> bool:
        return self.start == 0 and self.count == self.total


@dataclass
class ServiceInfo:
    """A service entry from a device description, with its SCPD document."""

    service_id: str
    service_type: str
    scpd_url: str
    control_url: str
    description: str = ""
    action_names: list[str] = field(default_factory=list)


@dataclass
class DeviceInfo:
    """Parsed root device description."""

    udn: str
    friendly_name: str
    device_type: str
    location: str
    description: str
    services: list[ServiceInfo] = field(default_factory=list)

    def find_service(self, service_id: str) -> ServiceInfo | None:
        for service in self.services:
            if service.service_id == service_id:
                return service
        return None
