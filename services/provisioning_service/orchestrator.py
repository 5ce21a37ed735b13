"""
Main provisioning service.
Sequences DNS reconciliation, certificate management and service deployment
for one edge endpoint, stopping at the first fatal step.
"""

import enum
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

from domain_registration.cert_manager import CertificateManager
from domain_registration.dns_reconciler import DNSReconciler
from domain_registration.errors import (
    HostEnvironmentError,
    InputValidationError,
    ProvisioningError,
)
from domain_registration.models import CertificateBundle, DnsRecordState, ProvisionRequest
from domain_registration.renewal import RenewalSchedule
from services.deployment_service.deployer import InstallerHandle, ServiceDeployer
from services.deployment_service.templater import DOMAIN_PLACEHOLDER, ConfigTemplater
from utils import CommandRunner, SubprocessCommandRunner

logger = logging.getLogger(__name__)

CERT_FILE_PLACEHOLDER = "PLACEHOLDER_CERT_FILE"
KEY_FILE_PLACEHOLDER = "PLACEHOLDER_KEY_FILE"


class ProvisioningStep(enum.Enum):
    VALIDATE = "validate"
    DNS = "dns"
    PROPAGATION = "propagation"
    CERTIFICATE = "certificate"
    RENEWAL_SCHEDULE = "renewal_schedule"
    INSTALL = "install"
    CERTIFICATES_PLACEMENT = "certificates_placement"
    CONFIG_RENDER = "config_render"
    START = "start"


@dataclass
class ProvisionOutcome:
    """What one run achieved, and where it stopped if it failed."""

    success: bool = False
    full_domain: Optional[str] = None
    failed_step: Optional[ProvisioningStep] = None
    error: Optional[ProvisioningError] = None
    dns_state: Optional[DnsRecordState] = None
    certificate: Optional[CertificateBundle] = None
    renewal_registered: Optional[bool] = None
    installed: Optional[bool] = None
    config_path: Optional[str] = None

    @property
    def exit_code(self) -> int:
        if self.success:
            return 0
        if isinstance(self.error, InputValidationError):
            return 2
        return 1


class ProvisioningOrchestrator:
    """Runs the provisioning steps in order for one endpoint."""

    def __init__(
        self,
        config,
        dns_reconciler: DNSReconciler,
        cert_manager: CertificateManager,
        renewal_schedule: RenewalSchedule,
        deployer: ServiceDeployer,
        templater: ConfigTemplater,
        installer: InstallerHandle,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.dns_reconciler = dns_reconciler
        self.cert_manager = cert_manager
        self.renewal_schedule = renewal_schedule
        self.deployer = deployer
        self.templater = templater
        self.installer = installer
        self.sleep = sleep

    @classmethod
    def from_config(
        cls,
        config,
        runner: Optional[CommandRunner] = None,
        installer_script: Optional[str] = None,
    ) -> "ProvisioningOrchestrator":
        """Wire the real collaborators from configuration."""
        runner = runner or SubprocessCommandRunner()
        script = os.path.abspath(installer_script or config.installer_script)
        return cls(
            config,
            dns_reconciler=DNSReconciler.from_config(config),
            cert_manager=CertificateManager(config, runner),
            renewal_schedule=RenewalSchedule.from_config(config, runner),
            deployer=ServiceDeployer(config, runner),
            templater=ConfigTemplater(config.xray_config_path),
            installer=InstallerHandle(script, config.installer_database),
        )

    def _check_host(self) -> None:
        if self.config.require_root and os.geteuid() != 0:
            raise HostEnvironmentError("This script must be run as root")

    def _wait_for_propagation(self, request: ProvisionRequest, state: DnsRecordState) -> None:
        seconds = self.config.dns_propagation_seconds
        logger.info(f"Waiting {seconds} seconds for DNS propagation...")
        self.sleep(seconds)
        if self.config.dns_propagation_check and state.current_address:
            self.dns_reconciler.check_propagation(
                request.full_domain, state.current_address, request.api_token
            )

    @staticmethod
    def _fail(
        outcome: ProvisionOutcome, step: ProvisioningStep, error: ProvisioningError
    ) -> ProvisionOutcome:
        error.step = step.value
        logger.error(f"Provisioning failed at step '{step.value}': {error}")
        outcome.failed_step = step
        outcome.error = error
        return outcome

    def run(self, subdomain: str, api_token: str) -> ProvisionOutcome:
        """
        Provision the endpoint ``<subdomain>.<base_domain>``.

        Safe to re-run: every step detects its own earlier success.

        Returns:
            The outcome; ``failed_step`` and ``error`` are set on failure
        """
        outcome = ProvisionOutcome()
        step = ProvisioningStep.VALIDATE

        try:
            request = ProvisionRequest.create(subdomain, api_token, self.config.base_domain)
            self._check_host()
            outcome.full_domain = request.full_domain
            logger.info(f"Starting installation for {request.full_domain}")
            logger.info("Step 1: Input validation completed")

            step = ProvisioningStep.DNS
            logger.info(f"Step 2: Configuring DNS record for {request.full_domain}")
            outcome.dns_state = self.dns_reconciler.reconcile(
                request.subdomain,
                request.base_domain,
                request.api_token,
                full_domain=request.full_domain,
            )

            step = ProvisioningStep.PROPAGATION
            self._wait_for_propagation(request, outcome.dns_state)

            step = ProvisioningStep.CERTIFICATE
            logger.info("Step 3: Setting up SSL certificates")
            outcome.certificate = self.cert_manager.ensure_certificate(
                request.base_domain, request.api_token
            )

            step = ProvisioningStep.RENEWAL_SCHEDULE
            outcome.renewal_registered = self.renewal_schedule.register()

            step = ProvisioningStep.INSTALL
            logger.info("Step 4: Installing service stack")
            outcome.installed = self.deployer.ensure_installed(self.installer)

            step = ProvisioningStep.CERTIFICATES_PLACEMENT
            logger.info("Step 5: Configuring certificates")
            placed = self.deployer.place_certificates(outcome.certificate)

            step = ProvisioningStep.CONFIG_RENDER
            logger.info("Step 6: Creating xray configuration")
            outcome.config_path = self.templater.render(
                self.config.xray_template_path,
                {
                    DOMAIN_PLACEHOLDER: request.full_domain,
                    CERT_FILE_PLACEHOLDER: placed.fullchain_path,
                    KEY_FILE_PLACEHOLDER: placed.private_key_path,
                },
            )

            step = ProvisioningStep.START
            logger.info("Step 7: Starting services")
            self.deployer.start()
            if not self.deployer.is_running():
                logger.warning(
                    f"Compose reported success but no '{self.config.container_name_filter}' container is running yet"
                )

        except ProvisioningError as e:
            return self._fail(outcome, step, e)
        except OSError as e:
            return self._fail(
                outcome,
                step,
                HostEnvironmentError(f"Filesystem operation failed during {step.value}", str(e)),
            )

        outcome.success = True
        logger.info("Installation completed!")
        logger.info(f"Access panel at: https://{outcome.full_domain}:{self.config.panel_port}")
        return outcome
