"""
Environment configuration for the edge provisioner.
Handles all environment variable parsing and validation.
"""

import os
import logging
import sys
from typing import List
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_XRAY_TEMPLATE = os.path.join(
    _PACKAGE_DIR,
    "services",
    "deployment_service",
    "templates",
    "xray_config_template.json",
)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.error(f"{name} must be an integer, got {raw!r}")
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class ProvisionConfig:
    """Provisioner configuration loaded from environment variables."""

    # Endpoint
    base_domain: str = "vpnymous.net"
    panel_port: int = 8000

    # DNS provider
    cloudflare_api_base: str = "https://api.cloudflare.com/client/v4"
    address_discovery_url: str = "https://ifconfig.me"
    http_timeout_seconds: int = 30
    dns_record_ttl: int = 300
    dns_propagation_seconds: int = 60
    dns_propagation_check: bool = True

    # Certificates
    certbot_command: str = "certbot"
    certbot_email: str = ""
    certbot_propagation_seconds: int = 60
    certificate_dir: str = "/etc/letsencrypt/live"
    credentials_path: str = "/root/.secrets/cloudflare.ini"
    renewal_threshold_days: int = 30
    renewal_cron_schedule: str = "0 0,12 * * *"
    renewal_command: str = f"{sys.executable} -m renew_certificates"

    # Service stack
    install_dir: str = "/etc/opt/marzneshin"
    installer_script: str = "script.sh"
    installer_database: str = "mariadb"
    runtime_data_dir: str = "/var/lib/marznode"
    xray_template_path: str = DEFAULT_XRAY_TEMPLATE
    container_name_filter: str = "marznode"

    require_root: bool = True

    @classmethod
    def from_env(cls) -> "ProvisionConfig":
        """Load configuration from environment variables."""
        defaults = cls()
        return cls(
            base_domain=os.getenv("EDGE_BASE_DOMAIN", defaults.base_domain),
            panel_port=_env_int("PANEL_PORT", defaults.panel_port),
            cloudflare_api_base=os.getenv(
                "CLOUDFLARE_API_BASE", defaults.cloudflare_api_base
            ),
            address_discovery_url=os.getenv(
                "ADDRESS_DISCOVERY_URL", defaults.address_discovery_url
            ),
            http_timeout_seconds=_env_int(
                "HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds
            ),
            dns_record_ttl=_env_int("DNS_RECORD_TTL", defaults.dns_record_ttl),
            dns_propagation_seconds=_env_int(
                "DNS_PROPAGATION_SECONDS", defaults.dns_propagation_seconds
            ),
            dns_propagation_check=_env_bool(
                "DNS_PROPAGATION_CHECK", defaults.dns_propagation_check
            ),
            certbot_command=os.getenv("CERTBOT_COMMAND", defaults.certbot_command),
            certbot_email=os.getenv("CERTBOT_EMAIL", defaults.certbot_email),
            certbot_propagation_seconds=_env_int(
                "CERTBOT_PROPAGATION_SECONDS", defaults.certbot_propagation_seconds
            ),
            certificate_dir=os.getenv("CERTIFICATE_DIR", defaults.certificate_dir),
            credentials_path=os.getenv(
                "CLOUDFLARE_CREDENTIALS_PATH", defaults.credentials_path
            ),
            renewal_threshold_days=_env_int(
                "RENEWAL_THRESHOLD_DAYS", defaults.renewal_threshold_days
            ),
            renewal_cron_schedule=os.getenv(
                "RENEWAL_CRON_SCHEDULE", defaults.renewal_cron_schedule
            ),
            renewal_command=os.getenv("RENEWAL_COMMAND", defaults.renewal_command),
            install_dir=os.getenv("INSTALL_DIR", defaults.install_dir),
            installer_script=os.getenv("INSTALLER_SCRIPT", defaults.installer_script),
            installer_database=os.getenv(
                "INSTALLER_DATABASE", defaults.installer_database
            ),
            runtime_data_dir=os.getenv("RUNTIME_DATA_DIR", defaults.runtime_data_dir),
            xray_template_path=os.getenv(
                "XRAY_TEMPLATE_PATH", defaults.xray_template_path
            ),
            container_name_filter=os.getenv(
                "CONTAINER_NAME_FILTER", defaults.container_name_filter
            ),
            require_root=_env_bool("EDGE_REQUIRE_ROOT", defaults.require_root),
        )

    @property
    def deployment_descriptor_path(self) -> str:
        return os.path.join(self.install_dir, "docker-compose.yml")

    @property
    def xray_config_path(self) -> str:
        return os.path.join(self.runtime_data_dir, "xray_config.json")

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.base_domain or "." not in self.base_domain:
            errors.append("EDGE_BASE_DOMAIN must be a registrable domain name")

        if self.certbot_email and "@" not in self.certbot_email:
            errors.append("CERTBOT_EMAIL must be a valid email address")

        if self.renewal_threshold_days < 1 or self.renewal_threshold_days > 89:
            errors.append("RENEWAL_THRESHOLD_DAYS must be between 1 and 89")

        if self.dns_propagation_seconds < 0:
            errors.append("DNS_PROPAGATION_SECONDS must not be negative")

        if self.certbot_propagation_seconds < 10:
            errors.append("CERTBOT_PROPAGATION_SECONDS must be at least 10 seconds")

        if self.http_timeout_seconds < 1:
            errors.append("HTTP_TIMEOUT_SECONDS must be at least 1 second")

        if self.dns_record_ttl != 1 and not 60 <= self.dns_record_ttl <= 86400:
            errors.append("DNS_RECORD_TTL must be 1 (automatic) or between 60 and 86400")

        if self.panel_port < 1 or self.panel_port > 65535:
            errors.append("PANEL_PORT must be between 1 and 65535")

        if len(self.renewal_cron_schedule.split()) != 5:
            errors.append("RENEWAL_CRON_SCHEDULE must have five cron fields")

        if not self.renewal_command.strip():
            errors.append("RENEWAL_COMMAND must not be empty")

        for name, value in (
            ("ADDRESS_DISCOVERY_URL", self.address_discovery_url),
            ("CLOUDFLARE_API_BASE", self.cloudflare_api_base),
        ):
            if not value.startswith(("http://", "https://")):
                errors.append(f"{name} must start with http:// or https://")

        return errors

    def log_configuration(self):
        """Log the current configuration (without sensitive data)."""
        logger.info("Provisioner configuration loaded from environment variables:")
        logger.info(f"  Base domain: {self.base_domain}")
        logger.info(f"  Certificate dir: {self.certificate_dir}")
        logger.info(f"  Renewal threshold: {self.renewal_threshold_days} days")
        logger.info(f"  DNS propagation wait: {self.dns_propagation_seconds}s")
        logger.info(f"  Install dir: {self.install_dir}")
        logger.info(f"  Runtime data dir: {self.runtime_data_dir}")
        if self.certbot_email:
            logger.info("  Certbot email: Configured")


def load_config_from_env() -> ProvisionConfig:
    """Load and validate provisioner configuration from environment variables."""
    config = ProvisionConfig.from_env()

    errors = config.validate()
    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    config.log_configuration()

    return config
