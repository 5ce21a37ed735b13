#!/usr/bin/env python3
"""
Tests for certificate issuance, expiry checks and renewal.
"""

import os
import stat
from datetime import datetime, timedelta, timezone

import pytest

from conftest import API_TOKEN, BASE_DOMAIN, install_fake_certbot, write_bundle
from domain_registration.cert_manager import CertificateManager
from domain_registration.errors import (
    ExternalAPIError,
    ExternalCommandError,
    PreconditionMissingError,
)
from domain_registration.models import CertificateState


def live_dir(config):
    return os.path.join(config.certificate_dir, BASE_DOMAIN)


def test_valid_certificate_short_circuits(config, runner):
    write_bundle(live_dir(config), days_valid=45)
    manager = CertificateManager(config, runner)

    bundle = manager.ensure_certificate(BASE_DOMAIN, API_TOKEN)

    assert runner.calls == []
    assert bundle.fullchain_path == os.path.join(live_dir(config), "fullchain.pem")
    assert manager.certificate_state(bundle) is CertificateState.VALID
    # Credentials are only written when a challenge is needed
    assert not os.path.exists(config.credentials_path)


def test_near_expiry_certificate_is_renewed(config, runner):
    write_bundle(live_dir(config), days_valid=10)
    install_fake_certbot(runner, config, days_valid=90)
    manager = CertificateManager(config, runner)

    bundle = manager.ensure_certificate(BASE_DOMAIN, API_TOKEN)

    calls = runner.calls_to("certbot", "certonly")
    assert len(calls) == 1
    assert "--force-renewal" in calls[0].args
    assert bundle.not_after > datetime.now(timezone.utc) + timedelta(days=30)


def test_absent_certificate_is_issued(config, runner):
    install_fake_certbot(runner, config)
    manager = CertificateManager(config, runner)

    bundle = manager.ensure_certificate(BASE_DOMAIN, API_TOKEN)

    args = runner.calls_to("certbot", "certonly")[0].args
    assert "--force-renewal" not in args
    assert "--dns-cloudflare" in args
    assert args[args.index("--dns-cloudflare-credentials") + 1] == config.credentials_path
    assert args[args.index("--dns-cloudflare-propagation-seconds") + 1] == "60"
    domains = [args[i + 1] for i, arg in enumerate(args) if arg == "-d"]
    assert domains == [f"*.{BASE_DOMAIN}", BASE_DOMAIN]
    assert "--register-unsafely-without-email" in args
    assert bundle.not_after > datetime.now(timezone.utc)


def test_credentials_file_is_private(config, runner):
    install_fake_certbot(runner, config)
    CertificateManager(config, runner).ensure_certificate(BASE_DOMAIN, API_TOKEN)

    with open(config.credentials_path) as f:
        assert f.read() == f"dns_cloudflare_api_token = {API_TOKEN}\n"
    assert stat.S_IMODE(os.stat(config.credentials_path).st_mode) == 0o600


def test_email_is_passed_when_configured(config, runner):
    config.certbot_email = "ops@example.org"
    cmd = CertificateManager(config, runner).build_certonly_command(BASE_DOMAIN, renew=False)
    assert cmd[cmd.index("--email") + 1] == "ops@example.org"
    assert "--register-unsafely-without-email" not in cmd


def test_missing_credentials_without_token(config, runner):
    install_fake_certbot(runner, config)
    with pytest.raises(PreconditionMissingError):
        CertificateManager(config, runner).ensure_certificate(BASE_DOMAIN)
    assert runner.calls == []


def test_certbot_failure(config, runner):
    runner.on("certbot", "certonly", returncode=1, stderr="DNS problem: NXDOMAIN")
    with pytest.raises(ExternalCommandError, match="NXDOMAIN") as excinfo:
        CertificateManager(config, runner).ensure_certificate(BASE_DOMAIN, API_TOKEN)
    assert excinfo.value.outcome.returncode == 1


def test_success_without_bundle_is_an_error(config, runner):
    runner.on("certbot", "certonly", stdout="Successfully received certificate.")
    with pytest.raises(ExternalAPIError, match="no certificate bundle"):
        CertificateManager(config, runner).ensure_certificate(BASE_DOMAIN, API_TOKEN)


def test_expired_bundle_after_issuance_is_an_error(config, runner):
    install_fake_certbot(runner, config, days_valid=-1)
    with pytest.raises(ExternalAPIError, match="expired"):
        CertificateManager(config, runner).ensure_certificate(BASE_DOMAIN, API_TOKEN)


def test_unparseable_certificate_counts_as_absent(config, runner):
    os.makedirs(live_dir(config))
    for name in ("fullchain.pem", "privkey.pem"):
        with open(os.path.join(live_dir(config), name), "w") as f:
            f.write("garbage")
    manager = CertificateManager(config, runner)
    assert manager.load_bundle(BASE_DOMAIN) is None


def test_threshold_uses_injected_clock(config, runner):
    write_bundle(live_dir(config), days_valid=45)
    later = datetime.now(timezone.utc) + timedelta(days=20)
    manager = CertificateManager(config, runner, now=lambda: later)

    bundle = manager.load_bundle(BASE_DOMAIN)
    assert manager.certificate_state(bundle) is CertificateState.NEAR_EXPIRY


def test_renew_certificates(config, runner):
    manager = CertificateManager(config, runner)

    runner.on("certbot", "renew", stdout="Congratulations, all renewals succeeded")
    assert manager.renew_certificates() is True

    runner.on(
        "certbot",
        "renew",
        stdout="The following certificates are not due for renewal yet:\nNo renewals were attempted.",
    )
    assert manager.renew_certificates() is False

    runner.on("certbot", "renew", returncode=1, stderr="Another instance of Certbot is already running.")
    with pytest.raises(ExternalCommandError):
        manager.renew_certificates()


def test_unwritable_credentials_location(config, runner, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    config.credentials_path = str(blocker / "cloudflare.ini")
    install_fake_certbot(runner, config)

    with pytest.raises(PreconditionMissingError, match="credentials"):
        CertificateManager(config, runner).ensure_certificate(BASE_DOMAIN, API_TOKEN)
    assert runner.calls == []
