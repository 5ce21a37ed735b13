"""
DNS reconciliation for the endpoint's A record.

The provider is always read right before deciding, so a retried run sees
whatever a previous partial run left behind.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .cloudflare_dns import CloudflareDNSProvider
from .host_address import HostAddressResolver
from .models import DnsRecordState, RecordAction, RecordStatus, join_domain

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str], CloudflareDNSProvider]


def classify_records(
    records: List[Dict[str, Any]], host_address: str
) -> DnsRecordState:
    """Map the provider's A records for one name onto a tagged state."""
    if not records:
        return DnsRecordState(exists=False, status=RecordStatus.ABSENT)

    for record in records:
        if record.get("content") == host_address:
            return DnsRecordState(
                exists=True,
                record_id=record.get("id"),
                current_address=host_address,
                status=RecordStatus.EXISTS_CORRECT,
            )

    first = records[0]
    return DnsRecordState(
        exists=True,
        record_id=first.get("id"),
        current_address=first.get("content"),
        status=RecordStatus.EXISTS_INCORRECT,
    )


class DNSReconciler:
    """Makes ``<subdomain>.<base_domain>`` resolve to this host."""

    def __init__(
        self,
        address_resolver: HostAddressResolver,
        provider_factory: Optional[ProviderFactory] = None,
        ttl: int = 300,
    ):
        self.address_resolver = address_resolver
        self.provider_factory = provider_factory or CloudflareDNSProvider
        self.ttl = ttl

    @classmethod
    def from_config(cls, config) -> "DNSReconciler":
        def provider_factory(token: str) -> CloudflareDNSProvider:
            return CloudflareDNSProvider(
                token,
                base_url=config.cloudflare_api_base,
                timeout=config.http_timeout_seconds,
            )

        return cls(
            HostAddressResolver(
                config.address_discovery_url, timeout=config.http_timeout_seconds
            ),
            provider_factory=provider_factory,
            ttl=config.dns_record_ttl,
        )

    def reconcile(
        self,
        subdomain: str,
        base_domain: str,
        token: str,
        full_domain: Optional[str] = None,
    ) -> DnsRecordState:
        """
        Create, update or leave alone the A record for the full domain.

        Args:
            full_domain: The name already derived by the caller's request;
                derived from subdomain and base_domain when omitted

        Returns:
            The record state after reconciliation; ``status`` is what was found
            and ``action`` is what was done about it.

        Raises:
            ExternalAPIError: on any address discovery or provider failure
        """
        full_domain = full_domain or join_domain(subdomain, base_domain)
        logger.info(f"Reconciling DNS record for {full_domain}")

        host_address = self.address_resolver.resolve()
        provider = self.provider_factory(token)
        zone_id = provider.get_zone_id(base_domain)

        found = classify_records(provider.get_a_records(zone_id, full_domain), host_address)

        if found.status is RecordStatus.EXISTS_CORRECT:
            logger.info(f"DNS record already exists with correct IP: {host_address}")
            return DnsRecordState(
                exists=True,
                record_id=found.record_id,
                current_address=host_address,
                status=found.status,
                action=RecordAction.UNCHANGED,
            )

        if found.status is RecordStatus.EXISTS_INCORRECT:
            logger.warning(
                f"DNS record exists with different IP: {found.current_address}, updating to {host_address}"
            )
            record = provider.update_a_record(
                zone_id, found.record_id, full_domain, host_address, self.ttl
            )
            action = RecordAction.UPDATED
            record_id = record.get("id") or found.record_id
        else:
            record = provider.create_a_record(zone_id, full_domain, host_address, self.ttl)
            action = RecordAction.CREATED
            record_id = record.get("id")

        logger.info("DNS record configured successfully")
        return DnsRecordState(
            exists=True,
            record_id=record_id,
            current_address=host_address,
            status=found.status,
            action=action,
        )

    def check_propagation(self, full_domain: str, address: str, token: str) -> bool:
        """Advisory public-resolver check; never raises for a missing record."""
        return self.provider_factory(token).verify_dns_propagation(full_domain, address)
