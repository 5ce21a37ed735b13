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
import logging
import sys

from log import init_logger
from parsers.parser import parse_args
from services.provisioning_service import ProvisioningOrchestrator

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    init_logger()
    args = parse_args(argv)
    init_logger(log_level=args.log_level)

    orchestrator = ProvisioningOrchestrator.from_config(
        args.config_obj, installer_script=args.installer
    )
    outcome = orchestrator.run(args.subdomain, args.api_token)

    if not outcome.success:
        logger.error(
            f"Provisioning stopped at step '{outcome.failed_step.value}'; "
            "fix the problem above and re-run, completed steps will be skipped"
        )
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
