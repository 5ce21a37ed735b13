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
"""
Scheduled renewal task registered in cron by the provisioner.
"""
import logging
import sys

from domain_registration.cert_manager import CertificateManager
from domain_registration.errors import ProvisioningError
from domain_registration.renewal import run_renewal
from log import init_logger
from parsers.parser import parse_renew_args
from services.deployment_service import ServiceDeployer
from utils import SubprocessCommandRunner

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    init_logger()
    args = parse_renew_args(argv)
    init_logger(log_level=args.log_level)

    config = args.config_obj
    runner = SubprocessCommandRunner()
    cert_manager = CertificateManager(config, runner)
    deployer = ServiceDeployer(config, runner)

    try:
        run_renewal(cert_manager, deployer, config.base_domain)
    except ProvisioningError as e:
        logger.error(f"Certificate renewal failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
