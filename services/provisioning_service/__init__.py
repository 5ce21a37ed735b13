"""
Provisioning service for the edge provisioner.
Sequences DNS, certificate and deployment steps for one endpoint.
"""

from .orchestrator import (
    ProvisioningOrchestrator,
    ProvisioningStep,
    ProvisionOutcome,
)

__all__ = [
    "ProvisioningOrchestrator",
    "ProvisioningStep",
    "ProvisionOutcome",
]
