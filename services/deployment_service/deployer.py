"""
Deploys the container service stack: runs the external installer once, places
certificates where the stack expects them and brings the stack up.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

import docker
import requests
from docker.errors import DockerException

from domain_registration.errors import (
    BestEffortFailure,
    ExternalCommandError,
    HostEnvironmentError,
    PreconditionMissingError,
)
from domain_registration.models import CertificateBundle
from utils import CommandRunner, atomic_write_text

logger = logging.getLogger(__name__)

# Descriptor keys that must reference the copied bundle, relative to the
# runtime data directory mounted into the node container.
CERTIFICATE_KEY_TARGETS: Dict[str, str] = {
    "SSL_CERT_FILE": "./fullchain.pem",
    "SSL_KEY_FILE": "./privkey.pem",
}


@dataclass(frozen=True)
class InstallerHandle:
    """The external panel installer; opaque apart from its exit status."""

    script_path: str
    database: str = "mariadb"

    def command(self) -> List[str]:
        return ["bash", self.script_path, "install", "--database", self.database]


def rewrite_descriptor_keys(text: str, targets: Dict[str, str]) -> str:
    """
    Point ``KEY: value`` and ``- KEY=value`` entries at new values.

    Keys that do not occur are left out; other lines are untouched.
    """
    for key, value in targets.items():
        mapping_style = re.compile(
            rf"^(?P<head>[ \t]*{re.escape(key)}[ \t]*:[ \t]*)\S.*?[ \t]*$", re.M
        )
        list_style = re.compile(
            rf"^(?P<head>[ \t]*-[ \t]*(?P<quote>[\"']?){re.escape(key)}=)[^\n]*?(?P=quote)[ \t]*$",
            re.M,
        )
        text, mapped = mapping_style.subn(
            lambda m: f'{m.group("head")}"{value}"', text
        )
        text, listed = list_style.subn(
            lambda m: f'{m.group("head")}{value}{m.group("quote")}', text
        )
        if not mapped and not listed:
            logger.warning(f"{key} not found in deployment descriptor")
    return text


class ServiceDeployer:
    """Converges the service stack described by the deployment descriptor."""

    def __init__(
        self,
        config,
        runner: CommandRunner,
        docker_client_factory: Callable[[], docker.DockerClient] = docker.from_env,
    ):
        self.config = config
        self.runner = runner
        self.docker_client_factory = docker_client_factory

    @property
    def descriptor_path(self) -> str:
        return self.config.deployment_descriptor_path

    def is_installed(self) -> bool:
        return os.path.isfile(self.descriptor_path)

    def ensure_installed(self, installer: InstallerHandle) -> bool:
        """
        Run the installer unless the deployment descriptor already exists.

        Returns:
            True if the installer ran

        Raises:
            PreconditionMissingError: if the installer script is missing, or it
                succeeded without producing the descriptor
            ExternalCommandError: if the installer fails
        """
        if self.is_installed():
            logger.info("Service stack already installed, skipping installation")
            return False

        if not os.path.isfile(installer.script_path):
            logger.error(f"Installer script not found at {installer.script_path}")
            raise PreconditionMissingError("Installer script not found", installer.script_path)

        logger.info(f"Running installer with {installer.database} database")
        outcome = self.runner.execute(installer.command())
        if not outcome.ok:
            logger.error(f"Installer failed: {outcome.stderr or outcome.stdout}")
            raise ExternalCommandError("Failed to install service stack", outcome)

        if not self.is_installed():
            raise PreconditionMissingError(
                "Installer finished but the deployment descriptor is missing",
                self.descriptor_path,
            )

        logger.info("Service stack installed successfully")
        return True

    def runtime_copy_paths(self) -> Tuple[str, str]:
        data_dir = self.config.runtime_data_dir
        return (
            os.path.join(data_dir, "fullchain.pem"),
            os.path.join(data_dir, "privkey.pem"),
        )

    def certificates_current(self, bundle: CertificateBundle) -> bool:
        """True if the runtime copies are byte-identical to bundle."""
        for source, copy in zip(
            (bundle.fullchain_path, bundle.private_key_path), self.runtime_copy_paths()
        ):
            try:
                with open(source, "rb") as a, open(copy, "rb") as b:
                    if a.read() != b.read():
                        return False
            except OSError:
                return False
        return True

    def place_certificates(self, bundle: CertificateBundle) -> CertificateBundle:
        """
        Copy the bundle into the runtime data directory and point the
        descriptor at the copies.

        Returns:
            The copied bundle

        Raises:
            PreconditionMissingError: if a source file or the descriptor is
                absent, or the copies or descriptor cannot be written
        """
        for source in (bundle.fullchain_path, bundle.private_key_path):
            if not os.path.isfile(source):
                logger.error(f"SSL certificate file not found: {source}")
                raise PreconditionMissingError("SSL certificates not found", source)

        if not self.is_installed():
            logger.error(f"Deployment descriptor not found at {self.descriptor_path}")
            raise PreconditionMissingError("Deployment descriptor not found", self.descriptor_path)

        data_dir = self.config.runtime_data_dir
        fullchain_copy, key_copy = self.runtime_copy_paths()
        try:
            os.makedirs(data_dir, exist_ok=True)
            shutil.copyfile(bundle.fullchain_path, fullchain_copy)
            shutil.copyfile(bundle.private_key_path, key_copy)
            os.chmod(key_copy, 0o600)
        except OSError as e:
            logger.error(f"Failed to copy SSL certificates to {data_dir}: {e}")
            raise PreconditionMissingError(
                f"Failed to copy SSL certificates to {data_dir}", str(e)
            )
        logger.info(f"SSL certificates copied to {data_dir}")

        try:
            with open(self.descriptor_path) as f:
                descriptor = f.read()
            updated = rewrite_descriptor_keys(descriptor, CERTIFICATE_KEY_TARGETS)
            if updated != descriptor:
                mode = os.stat(self.descriptor_path).st_mode & 0o777
                atomic_write_text(self.descriptor_path, updated, mode=mode)
                logger.info("Deployment descriptor SSL certificate paths updated")
            else:
                logger.info("Deployment descriptor already references the copied certificates")
        except OSError as e:
            logger.error(f"Failed to update deployment descriptor: {e}")
            raise PreconditionMissingError(
                f"Failed to update deployment descriptor {self.descriptor_path}", str(e)
            )

        return CertificateBundle(
            fullchain_path=fullchain_copy,
            private_key_path=key_copy,
            not_after=bundle.not_after,
        )

    def _ping_runtime(self) -> None:
        if not self.runner.available("docker"):
            raise HostEnvironmentError("Docker not found")
        try:
            client = self.docker_client_factory()
            try:
                client.ping()
            finally:
                client.close()
        except (DockerException, requests.exceptions.RequestException) as e:
            raise HostEnvironmentError("Docker daemon is not reachable", str(e))

    def compose_command(self) -> List[str]:
        """Pick the compose plugin when present, else the standalone binary."""
        if self.runner.execute(["docker", "compose", "version"]).ok:
            return ["docker", "compose"]
        if self.runner.available("docker-compose"):
            return ["docker-compose"]
        raise HostEnvironmentError("Neither 'docker compose' nor 'docker-compose' found")

    def start(self) -> None:
        """
        Bring the stack up detached.

        Raises:
            HostEnvironmentError: if docker or any compose front-end is missing
            PreconditionMissingError: if the stack is not installed
            ExternalCommandError: if compose fails
        """
        logger.info("Starting services")
        self._ping_runtime()
        compose = self.compose_command()

        if not self.is_installed():
            raise PreconditionMissingError("Deployment descriptor not found", self.descriptor_path)

        outcome = self.runner.execute(compose + ["up", "-d"], cwd=self.config.install_dir)
        if not outcome.ok:
            logger.error(f"Failed to start services: {outcome.stderr or outcome.stdout}")
            raise ExternalCommandError("Failed to start services", outcome)

        logger.info("Services started successfully")

    def is_running(self) -> bool:
        """True if a container matching the node name filter is running."""
        try:
            client = self.docker_client_factory()
            try:
                containers = client.containers.list(
                    filters={"name": self.config.container_name_filter, "status": "running"}
                )
            finally:
                client.close()
        except (DockerException, requests.exceptions.RequestException) as e:
            logger.warning(f"Could not inspect running containers: {e}")
            return False
        return bool(containers)

    def restart_containers(self) -> int:
        """
        Restart running containers matching the node name filter.

        Returns:
            Number of containers restarted

        Raises:
            BestEffortFailure: if docker cannot be reached or a restart fails,
                including transport errors docker-py passes through unwrapped
        """
        try:
            client = self.docker_client_factory()
            try:
                containers = client.containers.list(
                    filters={"name": self.config.container_name_filter}
                )
                for container in containers:
                    logger.info(f"Restarting container {container.name}")
                    container.restart()
            finally:
                client.close()
        except (DockerException, requests.exceptions.RequestException) as e:
            raise BestEffortFailure(f"Container restart failed: {e}") from e
        return len(containers)
