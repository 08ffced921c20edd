"""UPnP SOAP control client over plain HTTP."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from http.client import HTTPException
from typing import TYPE_CHECKING
from urllib import request as urllib_request
from urllib.error import HTTPError, URLError
from xml.sax.saxutils import escape

if TYPE_CHECKING:
    from cds_extractor.config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 30.0

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP_ENCODING = "http://schemas.xmlsoap.org/soap/encoding/"
USER_AGENT = "cds-extractor UPnP/1.0"


class UpnpError(Exception):
    """Base class for failures talking to a UPnP device."""


class UpnpTransportError(UpnpError):
    """Raised when an HTTP request to the device fails or returns garbage."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"UPnP transport error for {url}: {reason}")
        self.url = url
        self.reason = reason


class UpnpActionError(UpnpError):
    """Raised when the device answers an action with a SOAP fault."""

    def __init__(self, error_code: int, description: str) -> None:
        super().__init__(f"UPnP action error {error_code}: {description}")
        self.error_code = error_code
        self.description = description


def parse_int(value: str | None, default: int) -> int:
    """Parse a decimal integer, returning default when absent or malformed."""
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def local_name(tag: str) -> str:
    """Strip the ``{namespace}`` prefix ElementTree puts on element names."""
    return tag.rsplit("}", 1)[-1]


def build_envelope(service_type: str, action: str, arguments: list[tuple[str, str]]) -> bytes:
    """Serialize a SOAP 1.1 action request body.

    Args:
        service_type: Service type URN the action belongs to.
        action: Action name.
        arguments: Ordered (name, value) pairs; UPnP requires declaration order.

    Returns:
        UTF-8 encoded envelope.
    """
    args = "".join(f"<{name}>{escape(value)}</{name}>" for name, value in arguments)
    body = (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<s:Envelope xmlns:s="{SOAP_ENVELOPE_NS}" s:encodingStyle="{SOAP_ENCODING}">'
        "<s:Body>"
        f'<u:{action} xmlns:u="{service_type}">{args}</u:{action}>'
        "</s:Body>"
        "</s:Envelope>"
    )
    return body.encode("utf-8")


class SoapClient:
    """Fetches description documents and invokes actions on UPnP devices."""

    def __init__(self, timeout: float = DEFAULT_HTTP_TIMEOUT) -> None:
        """Initialise the client.

        Args:
            timeout: Seconds to wait for each HTTP response.
        """
        self._timeout = timeout

    def get_text(self, url: str) -> str:
        """Download a document (device description, SCPD) as text.

        Raises:
            UpnpTransportError: If the request fails.
        """
        req = urllib_request.Request(url, headers={"User-Agent": USER_AGENT}, method="GET")
        try:
            with urllib_request.urlopen(req, timeout=self._timeout) as resp:
                body: bytes = resp.read()
        except HTTPError as exc:
            raise UpnpTransportError(url, f"HTTP {exc.code} {exc.reason}") from exc
        except (URLError, OSError, HTTPException) as exc:
            raise UpnpTransportError(url, str(exc)) from exc
        logger.debug("[get_text] downloaded document; url:%s;bytes:%d", url, len(body))
        return body.decode("utf-8", errors="replace")

    def invoke(
        self,
        control_url: str,
        service_type: str,
        action: str,
        arguments: list[tuple[str, str]],
    ) -> dict[str, str]:
        """Invoke a UPnP action synchronously.

        Args:
            control_url: Absolute control URL of the service.
            service_type: Service type URN.
            action: Action name (e.g. "Browse").
            arguments: Ordered input arguments.

        Returns:
            Output arguments keyed by name.

        Raises:
            UpnpActionError: If the device returns a SOAP fault.
            UpnpTransportError: If the request fails or the response cannot be parsed.
        """
        req = urllib_request.Request(
            control_url,
            data=build_envelope(service_type, action, arguments),
            headers={
                "Content-Type": 'text/xml; charset="utf-8"',
                "SOAPACTION": f'"{service_type}#{action}"',
                "User-Agent": USER_AGENT,
            },
            method="POST",
        )
        try:
            with urllib_request.urlopen(req, timeout=self._timeout) as resp:
                body = resp.read()
        except HTTPError as exc:
            raw = exc.read()
            fault = _parse_fault(raw)
            if fault is not None:
                raise fault from exc
            raise UpnpTransportError(control_url, f"HTTP {exc.code} {exc.reason}") from exc
        except (URLError, OSError, HTTPException) as exc:
            raise UpnpTransportError(control_url, str(exc)) from exc

        return _parse_action_response(control_url, action, body)


def _parse_action_response(url: str, action: str, body: bytes) -> dict[str, str]:
    """Return the children of ``<u:{action}Response>`` keyed by local name."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise UpnpTransportError(url, f"malformed SOAP response: {exc}") from exc

    expected = f"{action}Response"
    for element in root.iter():
        if local_name(element.tag) == expected:
            return {local_name(child.tag): child.text or "" for child in element}
    raise UpnpTransportError(url, f"SOAP response has no {expected} element")


def _parse_fault(body: bytes) -> UpnpActionError | None:
    """Map a SOAP fault body to UpnpActionError, or None if it is not one."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return None
    code: str | None = None
    description = ""
    for element in root.iter():
        name = local_name(element.tag)
        if name == "errorCode":
            code = element.text
        elif name == "errorDescription":
            description = element.text or ""
    if code is None:
        return None
    return UpnpActionError(parse_int(code, -1), description)


def soap_client_from_config(config: AppConfig) -> SoapClient:
    """Construct a SoapClient from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured SoapClient instance.
    """
    return SoapClient(timeout=config.http_timeout)
