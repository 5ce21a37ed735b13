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
from logging import Logger

_COLORS = {
    logging.DEBUG: "\033[0;36m",
    logging.INFO: "\033[0;32m",
    logging.WARNING: "\033[1;33m",
    logging.ERROR: "\033[0;31m",
    logging.CRITICAL: "\033[0;31m",
}
_RESET = "\033[0m"


class CustomFormatter(logging.Formatter):
    """Level-tagged formatter, colored when writing to a terminal."""

    def __init__(self, use_color: bool = False):
        super().__init__(
            fmt="%(asctime)s %(levelname_tag)s %(message)s (%(filename)s:%(lineno)d:%(name)s)",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        tag = f"[{record.levelname}]"
        if self.use_color:
            tag = f"{_COLORS.get(record.levelno, '')}{tag}{_RESET}"
        record.levelname_tag = tag
        return super().format(record)


def init_logger(name: str = "", log_level=logging.INFO) -> Logger:
    """
    Attach the level-tagged stream handler to a logger once.

    Called with the default name it configures the root logger, which every
    module-level ``logging.getLogger(__name__)`` logger propagates to.
    """
    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)
    logger = logging.getLogger(name)
    if not logger.handlers:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(CustomFormatter(use_color=sys.stdout.isatty()))
        logger.addHandler(stream_handler)
    logger.setLevel(log_level)
    return logger

