"""
Service stack deployment for the edge provisioner.
"""

from .deployer import InstallerHandle, ServiceDeployer
from .templater import DOMAIN_PLACEHOLDER, ConfigTemplater

__all__ = [
    "InstallerHandle",
    "ServiceDeployer",
    "DOMAIN_PLACEHOLDER",
    "ConfigTemplater",
]
