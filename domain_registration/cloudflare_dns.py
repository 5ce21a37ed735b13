"""
Cloudflare DNS provider for edge provisioning.
Handles zone lookup and A record management through the Cloudflare v4 API.
"""

import json
import logging
import time
from typing import List, Optional, Dict, Any

import dns.exception
import dns.resolver
import requests

from .errors import ExternalAPIError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.cloudflare.com/client/v4"


class CloudflareDNSProvider:
    """Cloudflare DNS provider for looking up zones and managing A records."""

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_API_BASE,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize Cloudflare DNS provider.

        Args:
            api_token: Cloudflare API token
            base_url: API root, overridable for testing
            timeout: Per-request timeout in seconds
            session: Optional requests session (a fresh one is created otherwise)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }
        self.session = session or requests.Session()

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        """
        Make a request to the Cloudflare API and return the decoded body.

        Non-2xx responses are not raised here: Cloudflare reports the reason in
        the body, and callers check its success flag.

        Raises:
            ExternalAPIError: on transport failure or an undecodable body
        """
        url = f"{self.base_url}/{endpoint}"
        try:
            response = self.session.request(
                method.upper(),
                url,
                headers=self.headers,
                json=data,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Request Error: {str(e)}")
            if data:
                logger.debug(f"Request data: {json.dumps(data)}")
            raise ExternalAPIError(f"Cloudflare request {method} {endpoint} failed", str(e))

        try:
            result = response.json()
        except ValueError:
            logger.error("JSON Decode Error: Could not parse response")
            raise ExternalAPIError(
                f"Cloudflare returned an unparseable response for {method} {endpoint}",
                response.text,
            )

        if not isinstance(result, dict):
            raise ExternalAPIError(
                f"Cloudflare returned an unexpected response for {method} {endpoint}",
                result,
            )
        return result

    @staticmethod
    def _require_success(result: Dict[str, Any], action: str) -> Dict[str, Any]:
        if result.get("success") is not True:
            errors = result.get("errors") or []
            error_msg = "\n".join(
                [f"Code: {e.get('code')}, Message: {e.get('message')}" for e in errors]
            )
            logger.error(f"API Error while trying to {action}: {error_msg or result}")
            raise ExternalAPIError(f"Cloudflare failed to {action}", json.dumps(result))
        return result

    def get_zone_id(self, domain: str) -> str:
        """
        Get zone ID for a zone apex such as ``example.org``.

        Raises:
            ExternalAPIError: if the zone is not visible to the token
        """
        result = self._require_success(
            self._make_request("GET", "zones", params={"name": domain}),
            f"look up zone {domain}",
        )

        for zone in result.get("result") or []:
            if zone.get("name") == domain and zone.get("id"):
                logger.info(f"Found zone ID {zone['id']} for domain {domain}")
                return zone["id"]

        logger.error(f"Zone ID not found in response for domain: {domain}")
        raise ExternalAPIError(f"Zone not found for domain: {domain}", json.dumps(result))

    def get_a_records(self, zone_id: str, name: str) -> List[Dict[str, Any]]:
        """List A records with exactly this name. Always reads from the API."""
        result = self._require_success(
            self._make_request(
                "GET",
                f"zones/{zone_id}/dns_records",
                params={"name": name, "type": "A"},
            ),
            f"list A records for {name}",
        )
        return result.get("result") or []

    def create_a_record(
        self, zone_id: str, name: str, ip_address: str, ttl: int = 300
    ) -> Dict[str, Any]:
        """Create an A record and return it as Cloudflare describes it."""
        record_data = {
            "type": "A",
            "name": name,
            "content": ip_address,
            "ttl": ttl,
        }
        result = self._require_success(
            self._make_request("POST", f"zones/{zone_id}/dns_records", record_data),
            f"create A record for {name}",
        )
        record = result.get("result") or {}
        logger.info(f"Created A record {record.get('id')} for {name} -> {ip_address}")
        return record

    def update_a_record(
        self, zone_id: str, record_id: str, name: str, ip_address: str, ttl: int = 300
    ) -> Dict[str, Any]:
        """Point an existing A record at a new address, keeping its ID."""
        record_data = {
            "type": "A",
            "name": name,
            "content": ip_address,
            "ttl": ttl,
        }
        result = self._require_success(
            self._make_request(
                "PUT", f"zones/{zone_id}/dns_records/{record_id}", record_data
            ),
            f"update A record {record_id} for {name}",
        )
        logger.info(f"Updated A record {record_id} for {name} -> {ip_address}")
        return result.get("result") or {}

    def verify_dns_propagation(
        self,
        domain: str,
        expected_content: str,
        record_type: str = "A",
        timeout: int = 0,
        interval: int = 10,
    ) -> bool:
        """
        Check public resolution of a record, retrying until timeout.

        At least one lookup is always made.

        Returns:
            True if the record resolves to the expected content
        """
        logger.info(f"Checking DNS propagation for {domain} {record_type} record")
        start_time = time.time()

        while True:
            try:
                answers = dns.resolver.resolve(domain, record_type)
                for answer in answers:
                    if str(answer) == expected_content:
                        logger.info(f"DNS propagation confirmed for {domain}")
                        return True
                    logger.debug(
                        f"Found {record_type} record for {domain}: {answer} (expected: {expected_content})"
                    )
            except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.exception.Timeout):
                logger.debug(f"DNS record not yet propagated for {domain}")
            except dns.exception.DNSException as e:
                logger.debug(f"DNS lookup for {domain} failed: {e}")

            if time.time() - start_time + interval > timeout:
                break
            time.sleep(interval)

        logger.warning(f"{domain} does not resolve to {expected_content} yet")
        return False
