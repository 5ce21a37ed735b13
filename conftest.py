import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from unittest.mock import Mock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

# Ensure project root is importable regardless of how pytest is invoked
_project_root = os.path.dirname(os.path.abspath(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from env_config import ProvisionConfig  # noqa: E402
from utils import CommandOutcome, CommandRunner  # noqa: E402

BASE_DOMAIN = "vpnymous.net"
HOST_ADDRESS = "203.0.113.10"
API_TOKEN = "cf_token_0123456789"

SAMPLE_DESCRIPTOR = """services:
  marzneshin:
    image: dawsh/marzneshin:latest
    restart: always
    env_file: .env
    network_mode: host
  marznode:
    image: dawsh/marznode:latest
    restart: always
    network_mode: host
    environment:
      SERVICE_ADDRESS: "127.0.0.1"
      XRAY_EXECUTABLE_PATH: "/usr/local/bin/xray"
      XRAY_CONFIG_PATH: "/var/lib/marznode/xray_config.json"
      SSL_KEY_FILE: "./server.key"
      SSL_CERT_FILE: "./server.cert"
    volumes:
      - /var/lib/marznode:/var/lib/marznode
"""


def write_bundle(directory: str, days_valid: float) -> None:
    """Write a self-signed fullchain.pem/privkey.pem pair expiring in days_valid."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, BASE_DOMAIN)])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=90))
        .not_valid_after(now + timedelta(days=days_valid))
        .sign(key, hashes.SHA256())
    )
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, "fullchain.pem"), "wb") as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))
    with open(os.path.join(directory, "privkey.pem"), "wb") as f:
        f.write(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )


@dataclass
class FakeCall:
    args: List[str]
    cwd: Optional[str]
    input_text: Optional[str]


Handler = Callable[[List[str], Optional[str], Optional[str]], CommandOutcome]


class FakeRunner(CommandRunner):
    """Command runner answering from registered prefix handlers."""

    def __init__(self, programs=("docker", "crontab", "certbot", "bash")):
        self.programs = set(programs)
        self.calls: List[FakeCall] = []
        self.handlers = []

    def on(self, *prefix, handler: Optional[Handler] = None, returncode=0, stdout="", stderr=""):
        if handler is None:

            def handler(args, cwd, input_text):
                return CommandOutcome(list(args), returncode, stdout, stderr)

        # Later registrations win
        self.handlers.insert(0, (tuple(prefix), handler))
        return self

    def execute(self, args, cwd=None, input_text=None) -> CommandOutcome:
        args = list(args)
        self.calls.append(FakeCall(args, cwd, input_text))
        for prefix, handler in self.handlers:
            if tuple(args[: len(prefix)]) == prefix:
                return handler(args, cwd, input_text)
        return CommandOutcome(args, 127, "", f"{args[0]}: command not found")

    def available(self, program: str) -> bool:
        return program in self.programs

    def calls_to(self, *prefix) -> List[FakeCall]:
        return [c for c in self.calls if tuple(c.args[: len(prefix)]) == prefix]


class FakeCrontab:
    """In-memory crontab behind ``crontab -l`` / ``crontab -``."""

    def __init__(self, text: Optional[str] = None):
        self.text = text
        self.writes = 0

    def install(self, runner: FakeRunner) -> "FakeCrontab":
        runner.on("crontab", "-l", handler=self._list)
        runner.on("crontab", "-", handler=self._write)
        return self

    def _list(self, args, cwd, input_text):
        if self.text is None:
            return CommandOutcome(args, 1, "", "no crontab for root")
        return CommandOutcome(args, 0, self.text, "")

    def _write(self, args, cwd, input_text):
        self.text = input_text
        self.writes += 1
        return CommandOutcome(args, 0)


def install_fake_certbot(runner: FakeRunner, config: ProvisionConfig, days_valid: float = 90):
    """Make ``certbot certonly`` write a fresh bundle for the requested apex."""

    def certonly(args, cwd, input_text):
        apex = args[len(args) - 1 - args[::-1].index("-d") + 1]
        write_bundle(os.path.join(config.certificate_dir, apex), days_valid)
        return CommandOutcome(args, 0, "Successfully received certificate.", "")

    runner.on("certbot", "certonly", handler=certonly)


def install_fake_installer(runner: FakeRunner, config: ProvisionConfig):
    """Make the installer create the deployment descriptor."""

    def install(args, cwd, input_text):
        os.makedirs(config.install_dir, exist_ok=True)
        with open(config.deployment_descriptor_path, "w") as f:
            f.write(SAMPLE_DESCRIPTOR)
        return CommandOutcome(args, 0, "Marzneshin installed", "")

    runner.on("bash", config.installer_script, handler=install)


class FakeResponse:
    def __init__(self, body, status_code=200, text=None):
        self._body = body
        self.status_code = status_code
        self.text = text if text is not None else str(body)

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeCloudflareSession:
    """Enough of the Cloudflare v4 API to reconcile A records."""

    def __init__(self, zones=None, records=None):
        self.zones = zones if zones is not None else [{"id": "zone-1", "name": BASE_DOMAIN}]
        self.records = [dict(r) for r in (records or [])]
        self.calls = []
        self._next_id = 1

    @property
    def mutations(self):
        return [c for c in self.calls if c[0] in ("POST", "PUT", "DELETE")]

    def request(self, method, url, headers=None, json=None, params=None, timeout=None):
        self.calls.append((method, url, params, json))
        path = url.split("/client/v4/", 1)[1]

        if method == "GET" and path == "zones":
            zones = [z for z in self.zones if z["name"] == params["name"]]
            return FakeResponse({"success": True, "errors": [], "result": zones})

        if method == "GET" and path.endswith("/dns_records"):
            matches = [
                r
                for r in self.records
                if r["name"] == params["name"] and r["type"] == params["type"]
            ]
            return FakeResponse({"success": True, "errors": [], "result": matches})

        if method == "POST" and path.endswith("/dns_records"):
            record = dict(json, id=f"rec-{self._next_id}")
            self._next_id += 1
            self.records.append(record)
            return FakeResponse({"success": True, "errors": [], "result": record})

        if method == "PUT" and "/dns_records/" in path:
            record_id = path.rsplit("/", 1)[1]
            for record in self.records:
                if record["id"] == record_id:
                    record.update(json)
                    return FakeResponse({"success": True, "errors": [], "result": record})
            return FakeResponse(
                {"success": False, "errors": [{"code": 81044, "message": "Record not found"}]},
                status_code=404,
            )

        return FakeResponse(
            {"success": False, "errors": [{"code": 7000, "message": "No route"}]},
            status_code=400,
        )


@pytest.fixture
def config(tmp_path) -> ProvisionConfig:
    installer = tmp_path / "script.sh"
    installer.write_text("#!/bin/bash\nexit 0\n")
    return ProvisionConfig(
        base_domain=BASE_DOMAIN,
        certificate_dir=str(tmp_path / "letsencrypt" / "live"),
        credentials_path=str(tmp_path / "secrets" / "cloudflare.ini"),
        install_dir=str(tmp_path / "opt" / "marzneshin"),
        installer_script=str(installer),
        runtime_data_dir=str(tmp_path / "marznode"),
        renewal_command="/usr/bin/python3 -m renew_certificates",
        dns_propagation_check=False,
        require_root=False,
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def docker_client() -> Mock:
    client = Mock()
    client.ping.return_value = True
    container = Mock()
    container.name = "marzneshin-marznode-1"
    client.containers.list.return_value = [container]
    return client
