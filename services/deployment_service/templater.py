"""
Materializes service configuration files from templates.
"""

import json
import logging
import os
from typing import Dict

from domain_registration.errors import PreconditionMissingError
from utils import atomic_write_text

logger = logging.getLogger(__name__)

DOMAIN_PLACEHOLDER = "PLACEHOLDER_DOMAIN"


class ConfigTemplater:
    """Renders a template into a fixed output path by plain text substitution."""

    def __init__(self, output_path: str):
        self.output_path = output_path

    def render(self, template_path: str, substitutions: Dict[str, str]) -> str:
        """
        Replace every placeholder occurrence and write the result.

        The output is written to a temporary file, verified, then moved into
        place; on failure no output file is left behind.

        Args:
            template_path: Template file to read
            substitutions: Placeholder token -> replacement value

        Returns:
            The rendered configuration path

        Raises:
            PreconditionMissingError: if the template is missing or the output
                cannot be written or verified
        """
        if not os.path.isfile(template_path):
            logger.error(f"Config template not found at {template_path}")
            raise PreconditionMissingError("Config template not found", template_path)

        try:
            with open(template_path) as f:
                rendered = f.read()
        except OSError as e:
            logger.error(f"Failed to read config template {template_path}: {e}")
            raise PreconditionMissingError("Failed to read config template", str(e))
        for placeholder, value in substitutions.items():
            rendered = rendered.replace(placeholder, value)

        def verify(tmp_path: str) -> None:
            with open(tmp_path) as f:
                written = f.read()
            if written != rendered:
                raise PreconditionMissingError(
                    "Rendered configuration did not round-trip", tmp_path
                )
            leftover = [p for p in substitutions if p in written]
            if leftover:
                raise PreconditionMissingError(
                    "Rendered configuration still contains placeholders",
                    ", ".join(leftover),
                )
            if self.output_path.endswith(".json"):
                try:
                    json.loads(written)
                except ValueError as e:
                    raise PreconditionMissingError(
                        "Rendered configuration is not valid JSON", str(e)
                    )

        logger.info(f"Creating {os.path.basename(self.output_path)} from {template_path}")
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.output_path)), exist_ok=True)
            atomic_write_text(self.output_path, rendered, mode=0o644, verify=verify)
        except OSError as e:
            logger.error(f"Failed to create configuration at {self.output_path}: {e}")
            raise PreconditionMissingError(
                f"Failed to write configuration to {self.output_path}", str(e)
            )

        logger.info(f"Configuration created successfully at {self.output_path}")
        return self.output_path
