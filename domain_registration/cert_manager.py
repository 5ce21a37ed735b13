"""
Certificate management for edge provisioning.
Handles Let's Encrypt certificate operations with Cloudflare DNS-01 challenges.
"""

import os
import shlex
import logging
from typing import Callable, List, Optional, Tuple
from datetime import datetime, timedelta, timezone

from cryptography import x509

from utils import CommandRunner, atomic_write_text
from .errors import ExternalAPIError, ExternalCommandError, PreconditionMissingError
from .models import CertificateBundle, CertificateState

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateManager:
    """Manages the wildcard + apex certificate for the base domain."""

    def __init__(
        self,
        config,
        runner: CommandRunner,
        now: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize certificate manager.

        Args:
            config: Provisioner configuration
            runner: Capability used to invoke certbot
            now: Clock returning an aware UTC datetime
        """
        self.config = config
        self.runner = runner
        self.now = now
        self.credentials_path = config.credentials_path

    def bundle_paths(self, domain: str) -> Tuple[str, str]:
        live_dir = os.path.join(self.config.certificate_dir, domain)
        return (
            os.path.join(live_dir, "fullchain.pem"),
            os.path.join(live_dir, "privkey.pem"),
        )

    def load_bundle(self, domain: str) -> Optional[CertificateBundle]:
        """
        Read the on-disk bundle for domain.

        Returns:
            The bundle, or None when either file is missing or the certificate
            cannot be parsed (both mean a new certificate is needed)
        """
        fullchain_path, key_path = self.bundle_paths(domain)
        if not (os.path.isfile(fullchain_path) and os.path.isfile(key_path)):
            logger.debug(f"No certificate bundle for {domain} at {fullchain_path}")
            return None

        try:
            with open(fullchain_path, "rb") as f:
                cert = x509.load_pem_x509_certificate(f.read())
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read certificate for {domain}: {e}")
            return None

        return CertificateBundle(
            fullchain_path=fullchain_path,
            private_key_path=key_path,
            not_after=cert.not_valid_after_utc,
        )

    def certificate_state(self, bundle: Optional[CertificateBundle]) -> CertificateState:
        if bundle is None:
            return CertificateState.ABSENT
        threshold = timedelta(days=self.config.renewal_threshold_days)
        if bundle.not_after - self.now() > threshold:
            return CertificateState.VALID
        return CertificateState.NEAR_EXPIRY

    def setup_certbot_credentials(self, api_token: str) -> None:
        """Write the Cloudflare credentials file certbot's plugin reads."""
        directory = os.path.dirname(os.path.abspath(self.credentials_path))
        try:
            os.makedirs(directory, mode=0o700, exist_ok=True)
            atomic_write_text(
                self.credentials_path,
                f"dns_cloudflare_api_token = {api_token}\n",
                mode=0o600,
            )
        except OSError as e:
            logger.error(f"Failed to write Cloudflare credentials: {e}")
            raise PreconditionMissingError(
                "Failed to write Cloudflare credentials file", str(e)
            )
        logger.info("Cloudflare credentials setup successful")

    def _certbot(self) -> List[str]:
        return shlex.split(self.config.certbot_command)

    def build_certonly_command(self, domain: str, renew: bool) -> List[str]:
        cmd = self._certbot() + [
            "certonly",
            "--dns-cloudflare",
            "--dns-cloudflare-credentials",
            self.credentials_path,
            "--dns-cloudflare-propagation-seconds",
            str(self.config.certbot_propagation_seconds),
            "--agree-tos",
            "--non-interactive",
            "-d",
            f"*.{domain}",
            "-d",
            domain,
        ]
        if self.config.certbot_email:
            cmd += ["--email", self.config.certbot_email]
        else:
            cmd.append("--register-unsafely-without-email")
        if renew:
            cmd.append("--force-renewal")
        return cmd

    def ensure_certificate(
        self, domain: str, api_token: Optional[str] = None
    ) -> CertificateBundle:
        """
        Return a bundle for domain valid beyond the renewal threshold.

        An existing valid bundle is returned without contacting the CA.

        Args:
            domain: Apex domain; the certificate covers it and ``*.domain``
            api_token: DNS provider token for the challenge; when omitted the
                existing credentials file is used

        Raises:
            ExternalCommandError: if certbot fails
            ExternalAPIError: if certbot succeeds but no usable bundle appears
            PreconditionMissingError: if no credentials are available
        """
        bundle = self.load_bundle(domain)
        state = self.certificate_state(bundle)

        if state is CertificateState.VALID:
            logger.info(
                f"Existing certificate for {domain} is valid until {bundle.not_after.isoformat()}, skipping certificate generation"
            )
            return bundle

        renew = state is CertificateState.NEAR_EXPIRY
        if renew:
            days_left = (bundle.not_after - self.now()).days
            logger.warning(f"Certificate for {domain} expires in {days_left} days, will renew")
        else:
            logger.info(f"No certificate for {domain}, requesting one")

        return self.obtain_certificate(domain, api_token, renew=renew)

    def obtain_certificate(
        self, domain: str, api_token: Optional[str], renew: bool = False
    ) -> CertificateBundle:
        """Run the DNS-01 issuance for ``*.domain`` and ``domain``."""
        if api_token:
            self.setup_certbot_credentials(api_token)
        elif not os.path.isfile(self.credentials_path):
            raise PreconditionMissingError(
                "Cloudflare credentials file not found", self.credentials_path
            )

        cmd = self.build_certonly_command(domain, renew)
        logger.info(f"Requesting SSL certificate for *.{domain}")
        outcome = self.runner.execute(cmd)

        if not outcome.ok:
            logger.error(f"Certificate obtaining failed for {domain}")
            logger.error(f"stdout: {outcome.stdout}")
            logger.error(f"stderr: {outcome.stderr}")
            raise ExternalCommandError(f"Failed to obtain SSL certificate for {domain}", outcome)

        bundle = self.load_bundle(domain)
        if bundle is None:
            raise ExternalAPIError(
                f"certbot reported success but no certificate bundle exists for {domain}",
                outcome.stdout,
            )
        if bundle.not_after <= self.now():
            raise ExternalAPIError(
                f"certbot reported success but the certificate for {domain} is expired",
                bundle.not_after.isoformat(),
            )

        logger.info(f"SSL certificate obtained successfully, valid until {bundle.not_after.isoformat()}")
        return bundle

    def renew_certificates(self) -> bool:
        """
        Run ``certbot renew`` for every lineage on the host.

        Returns:
            True if certbot renewed at least one certificate

        Raises:
            ExternalCommandError: if certbot fails
        """
        cmd = self._certbot() + ["renew", "--non-interactive"]
        logger.info("Running certbot renew command...")
        outcome = self.runner.execute(cmd)

        if not outcome.ok:
            logger.error("Certificate renewal failed")
            logger.error(f"stdout: {outcome.stdout}")
            logger.error(f"stderr: {outcome.stderr}")
            raise ExternalCommandError("Certificate renewal failed", outcome)

        output = f"{outcome.stdout}\n{outcome.stderr}"
        if "No renewals were attempted" in output:
            logger.info("No renewal needed")
            return False

        logger.info("Certificate renewal completed")
        return True
