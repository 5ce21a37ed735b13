"""
Domain registration for the edge provisioner.
Provides DNS reconciliation against Cloudflare and Let's Encrypt certificate
management with scheduled renewal.
"""

from .cloudflare_dns import CloudflareDNSProvider
from .host_address import HostAddressResolver
from .dns_reconciler import DNSReconciler
from .cert_manager import CertificateManager
from .renewal import RenewalSchedule, run_renewal
from .models import (
    CertificateBundle,
    CertificateState,
    DnsRecordState,
    ProvisionRequest,
    RecordAction,
    RecordStatus,
)

__all__ = [
    "CloudflareDNSProvider",
    "HostAddressResolver",
    "DNSReconciler",
    "CertificateManager",
    "RenewalSchedule",
    "run_renewal",
    "CertificateBundle",
    "CertificateState",
    "DnsRecordState",
    "ProvisionRequest",
    "RecordAction",
    "RecordStatus",
]
