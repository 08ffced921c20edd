"""MediaServer device description loading and ContentDirectory Browse access."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from urllib.parse import urljoin

from cds_extractor.upnp.client import (
    SoapClient,
    UpnpError,
    UpnpTransportError,
    local_name,
    parse_int,
)
from cds_extractor.upnp.didl import parse_direct_children
from cds_extractor.upnp.fetcher import CHUNK_SIZE, PageFetcher
from cds_extractor.upnp.models import (
    ACTION_BROWSE,
    ARG_BROWSE_FLAG,
    ARG_FILTER,
    ARG_OBJECT_ID,
    ARG_REQUESTED_COUNT,
    ARG_SORT_CRITERIA,
    ARG_STARTING_INDEX,
    BROWSE_DIRECT_CHILDREN,
    CDS_SERVICE_ID,
    DESC_CONTROL_URL,
    DESC_DEVICE,
    DESC_DEVICE_TYPE,
    DESC_FRIENDLY_NAME,
    DESC_SCPD_URL,
    DESC_SERVICE,
    DESC_SERVICE_ID,
    DESC_SERVICE_LIST,
    DESC_SERVICE_TYPE,
    DESC_UDN,
    DESC_URL_BASE,
    MS_DEVICE_TYPE,
    RESULT_NUMBER_RETURNED,
    RESULT_RESULT,
    RESULT_TOTAL_MATCHES,
    RESULT_UPDATE_ID,
    SCPD_ACTION,
    SCPD_NAME,
    BrowseResponse,
    DeviceInfo,
    ServiceInfo,
)

logger = logging.getLogger(__name__)


class UnsupportedDeviceError(UpnpError):
    """Raised when a device cannot serve as a ContentDirectory source."""


def _child(element: ET.Element, name: str) -> ET.Element | None:
    for child in element:
        if local_name(child.tag) == name:
            return child
    return None


def _child_text(element: ET.Element, name: str) -> str:
    child = _child(element, name)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _parse_xml(url: str, xml: str) -> ET.Element:
    try:
        return ET.fromstring(xml)
    except ET.ParseError as exc:
        raise UpnpTransportError(url, f"malformed description: {exc}") from exc


def parse_device_description(xml: str, location: str) -> DeviceInfo:
    """Parse a root device description document.

    Embedded devices are ignored. Relative SCPD and control URLs are resolved
    against ``URLBase`` when present, otherwise against the location.

    Args:
        xml: Device description document.
        location: URL the document was downloaded from.

    Returns:
        DeviceInfo with services in document order (SCPDs not yet loaded).

    Raises:
        UpnpTransportError: If the document is not well-formed.
        UnsupportedDeviceError: If the document has no device element.
    """
    root = _parse_xml(location, xml)
    device = _child(root, DESC_DEVICE)
    if device is None:
        raise UnsupportedDeviceError(f"device description at {location} has no device element")

    base = _child_text(root, DESC_URL_BASE) or location
    services: list[ServiceInfo] = []
    service_list = _child(device, DESC_SERVICE_LIST)
    if service_list is not None:
        for service in service_list:
            if local_name(service.tag) != DESC_SERVICE:
                continue
            services.append(
                ServiceInfo(
                    service_id=_child_text(service, DESC_SERVICE_ID),
                    service_type=_child_text(service, DESC_SERVICE_TYPE),
                    scpd_url=urljoin(base, _child_text(service, DESC_SCPD_URL)),
                    control_url=urljoin(base, _child_text(service, DESC_CONTROL_URL)),
                )
            )

    return DeviceInfo(
        udn=_child_text(device, DESC_UDN),
        friendly_name=_child_text(device, DESC_FRIENDLY_NAME),
        device_type=_child_text(device, DESC_DEVICE_TYPE),
        location=location,
        description=xml,
        services=services,
    )


def parse_action_names(xml: str, url: str = "") -> list[str]:
    """Return the action names declared by a service description (SCPD)."""
    root = _parse_xml(url, xml)
    names: list[str] = []
    for element in root.iter():
        if local_name(element.tag) == SCPD_ACTION:
            name = _child_text(element, SCPD_NAME)
            if name:
                names.append(name)
    return names


class MediaServer:
    """A UPnP MediaServer with a ContentDirectory service that supports Browse."""

    def __init__(self, device: DeviceInfo, client: SoapClient) -> None:
        """Validate the device and bind it to a SOAP client.

        Args:
            device: Parsed device description with SCPDs loaded.
            client: Client used to invoke the Browse action.

        Raises:
            UnsupportedDeviceError: If the device is not a MediaServer, has no
                ContentDirectory service, or the service lacks Browse.
        """
        if not device.device_type.startswith(MS_DEVICE_TYPE):
            raise UnsupportedDeviceError(f"device is not a MediaServer: {device.device_type}")
        cds = device.find_service(CDS_SERVICE_ID)
        if cds is None:
            raise UnsupportedDeviceError(f"{device.friendly_name} has no ContentDirectory service")
        if ACTION_BROWSE not in cds.action_names:
            raise UnsupportedDeviceError(f"{device.friendly_name} has no Browse action")
        self._device = device
        self._cds = cds
        self._client = client

    @property
    def device(self) -> DeviceInfo:
        return self._device

    @property
    def friendly_name(self) -> str:
        return self._device.friendly_name

    @property
    def udn(self) -> str:
        return self._device.udn

    def description_documents(self) -> list[tuple[str, str]]:
        """Return (name, document) pairs: the device description, then each SCPD."""
        documents = [(self._device.friendly_name, self._device.description)]
        documents.extend((s.service_id, s.description) for s in self._device.services)
        return documents

    def invoke_browse(
        self,
        object_id: str,
        browse_filter: str,
        sort_criteria: str,
        start: int,
        count: int,
    ) -> BrowseResponse:
        """Invoke BrowseDirectChildren once and return its raw output.

        Raises:
            UpnpError: If the call fails.
        """
        logger.debug(
            "[invoke_browse] browsing; object_id:%s;start:%d;count:%d", object_id, start, count
        )
        result = self._client.invoke(
            self._cds.control_url,
            self._cds.service_type,
            ACTION_BROWSE,
            [
                (ARG_OBJECT_ID, object_id),
                (ARG_BROWSE_FLAG, BROWSE_DIRECT_CHILDREN),
                (ARG_FILTER, browse_filter),
                (ARG_STARTING_INDEX, str(start)),
                (ARG_REQUESTED_COUNT, str(count)),
                (ARG_SORT_CRITERIA, sort_criteria),
            ],
        )
        return BrowseResponse(
            result=result.get(RESULT_RESULT, ""),
            number_returned=parse_int(result.get(RESULT_NUMBER_RETURNED), -1),
            total_matches=parse_int(result.get(RESULT_TOTAL_MATCHES), -1),
            update_id=parse_int(result.get(RESULT_UPDATE_ID), -1),
        )

    def page_fetcher(self, chunk_size: int = CHUNK_SIZE) -> PageFetcher:
        """Return a PageFetcher bound to this server's Browse action and UDN."""
        return PageFetcher(
            invoke=self.invoke_browse,
            decode=parse_direct_children,
            device_context=self.udn,
            chunk_size=chunk_size,
        )

    def __str__(self) -> str:
        return self.friendly_name


def load_media_server(location: str, client: SoapClient) -> MediaServer:
    """Download a device description and its SCPDs and build a MediaServer.

    Args:
        location: URL of the device description (the SSDP LOCATION header).
        client: Client used for downloads and, later, Browse calls.

    Returns:
        Validated MediaServer.

    Raises:
        UpnpTransportError: If a document cannot be downloaded or parsed.
        UnsupportedDeviceError: If the device cannot serve Browse.
    """
    device = parse_device_description(client.get_text(location), location)
    for service in device.services:
        service.description = client.get_text(service.scpd_url)
        service.action_names = parse_action_names(service.description, service.scpd_url)
    logger.info(
        "[load_media_server] loaded device; friendly_name:%s;udn:%s;service_count:%d",
        device.friendly_name,
        device.udn,
        len(device.services),
    )
    return MediaServer(device, client)
