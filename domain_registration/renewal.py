"""
Periodic certificate renewal.

The renewal task lives in the host crontab so it outlives the provisioning
run. Registration is idempotent: an existing entry (ours, or a plain
``certbot renew`` line left by an older setup) is never duplicated.
"""

import logging

from utils import CommandRunner
from .cert_manager import CertificateManager
from .errors import ExternalCommandError, HostEnvironmentError

logger = logging.getLogger(__name__)

LEGACY_RENEWAL_MARKER = "certbot renew"


class RenewalSchedule:
    """Registers the renewal command as a cron job for the current user."""

    def __init__(
        self,
        runner: CommandRunner,
        command: str,
        schedule: str = "0 0,12 * * *",
    ):
        self.runner = runner
        self.command = command.strip()
        self.schedule = schedule

    @classmethod
    def from_config(cls, config, runner: CommandRunner) -> "RenewalSchedule":
        return cls(runner, config.renewal_command, config.renewal_cron_schedule)

    @property
    def entry(self) -> str:
        return f"{self.schedule} {self.command}"

    def read_crontab(self) -> str:
        if not self.runner.available("crontab"):
            raise HostEnvironmentError("crontab not found", "install cron to enable auto-renewal")

        outcome = self.runner.execute(["crontab", "-l"])
        if outcome.ok:
            return outcome.stdout
        if "no crontab" in outcome.stderr.lower():
            return ""
        raise ExternalCommandError("Failed to read crontab", outcome)

    def is_registered(self, crontab_text: str) -> bool:
        for line in crontab_text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if self.command in line or LEGACY_RENEWAL_MARKER in line:
                return True
        return False

    def register(self) -> bool:
        """
        Add the renewal job unless an equivalent one exists.

        Returns:
            True if a new entry was written
        """
        logger.info("Setting up SSL auto-renewal")
        current = self.read_crontab()

        if self.is_registered(current):
            logger.info("Auto-renewal already configured")
            return False

        lines = current.rstrip("\n")
        new_crontab = f"{lines}\n{self.entry}\n" if lines else f"{self.entry}\n"
        outcome = self.runner.execute(["crontab", "-"], input_text=new_crontab)
        if not outcome.ok:
            raise ExternalCommandError("Failed to install renewal cron job", outcome)

        logger.info(f"SSL auto-renewal configured: {self.entry}")
        return True


def run_renewal(cert_manager: CertificateManager, deployer, domain: str) -> bool:
    """
    Renew due certificates and hand fresh copies to the service stack.

    The runtime copies are compared with the live bundle on every run, so a
    delivery that failed after an earlier renewal is retried even when
    certbot has nothing new. The stack is restarted only after new copies
    were placed; a failing restart is logged and does not fail the renewal.

    Args:
        cert_manager: Runs ``certbot renew`` and reads the live bundle
        deployer: Places certificate copies and restarts the containers
        domain: Apex domain naming the certificate lineage

    Returns:
        True if certbot renewed a certificate

    Raises:
        ExternalCommandError: if certbot itself fails
        PreconditionMissingError: if the renewed copies cannot be placed
    """
    renewed = cert_manager.renew_certificates()

    if not deployer.is_installed():
        logger.info("Service stack not installed, no certificates to deliver")
        return renewed

    bundle = cert_manager.load_bundle(domain)
    if bundle is None:
        logger.warning(f"No certificate bundle for {domain}, nothing to deliver")
        return renewed

    if deployer.certificates_current(bundle):
        logger.info("Service stack already uses the current certificates")
        return renewed

    deployer.place_certificates(bundle)

    try:
        restarted = deployer.restart_containers()
    except Exception as e:
        logger.warning(f"Certificates delivered but the service restart failed: {e}")
    else:
        logger.info(f"Restarted {restarted} container(s) with the renewed certificates")
    return renewed
