# Copyright 2024-2025 The vLLM Production Stack Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import argparse
import logging
import sys

from env_config import load_config_from_env
from version import __version__

logger = logging.getLogger(__name__)

LOG_LEVELS = ["critical", "error", "warning", "info", "debug"]


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=LOG_LEVELS,
        help="Log level. Default is 'info'.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show version and exit",
    )


def _attach_config(args: argparse.Namespace) -> argparse.Namespace:
    logger.info("Loading configuration from environment variables")
    try:
        args.config_obj = load_config_from_env()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    return args


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Provision an edge endpoint: DNS record, wildcard TLS certificate and "
            "the node service stack. Safe to re-run on a partially configured host. "
            "Further settings are read from environment variables."
        ),
        epilog="Example: edge-provision main cf_token_here",
    )
    parser.add_argument(
        "subdomain",
        type=str,
        help="Subdomain to create under the base domain (letters, digits and '-').",
    )
    parser.add_argument(
        "api_token",
        type=str,
        help="Cloudflare API token with DNS edit permission on the base domain.",
    )
    parser.add_argument(
        "--installer",
        type=str,
        default=None,
        help="Path to the service stack installer script (overrides INSTALLER_SCRIPT).",
    )
    _add_common_arguments(parser)

    args = parser.parse_args(argv)
    return _attach_config(args)


def parse_renew_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Renew due certificates with certbot and restart the node containers "
            "when anything was renewed. Intended to run from cron."
        )
    )
    _add_common_arguments(parser)

    args = parser.parse_args(argv)
    return _attach_config(args)
