"""
Public address discovery for the provisioning host.
"""

import ipaddress
import logging
from typing import Optional

import requests

from .errors import ExternalAPIError

logger = logging.getLogger(__name__)


class HostAddressResolver:
    """Asks an external echo service for the host's public IPv4 address."""

    def __init__(
        self,
        discovery_url: str = "https://ifconfig.me",
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.discovery_url = discovery_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def resolve(self) -> str:
        """
        Return the public IPv4 address as a string.

        Raises:
            ExternalAPIError: if the service is unreachable or answers with
                anything other than an IPv4 address
        """
        try:
            # ifconfig.me answers with HTML unless the client looks like curl
            response = self.session.get(
                self.discovery_url,
                headers={"User-Agent": "curl/8.5.0", "Accept": "text/plain"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to get server IP: {e}")
            raise ExternalAPIError("Failed to get server IP", str(e))

        body = response.text.strip()
        try:
            address = ipaddress.IPv4Address(body)
        except ValueError:
            logger.error(f"Address discovery returned a non-IPv4 answer: {body!r}")
            raise ExternalAPIError("Failed to get server IP", body or "<empty response>")

        logger.info(f"Server IP: {address}")
        return str(address)
