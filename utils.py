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
import abc
import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOutcome:
    """Result of running an external process."""

    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        text = f"command '{' '.join(self.args)}' exited with {self.returncode}"
        output = (self.stderr or self.stdout).strip()
        if output:
            text += f": {output}"
        return text


class CommandRunner(abc.ABC):
    """Capability for invoking external processes."""

    @abc.abstractmethod
    def execute(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        input_text: Optional[str] = None,
    ) -> CommandOutcome:
        raise NotImplementedError

    @abc.abstractmethod
    def available(self, program: str) -> bool:
        raise NotImplementedError


@dataclass
class SubprocessCommandRunner(CommandRunner):
    """Runs commands on the local host with subprocess."""

    timeout: Optional[int] = None
    env: Optional[dict] = field(default=None, repr=False)

    def execute(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        input_text: Optional[str] = None,
    ) -> CommandOutcome:
        args = list(args)
        logger.debug(f"Running command: {' '.join(args)}")
        try:
            result = subprocess.run(
                args,
                cwd=cwd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self.env,
            )
        except FileNotFoundError as e:
            return CommandOutcome(args, 127, "", str(e))
        return CommandOutcome(args, result.returncode, result.stdout, result.stderr)

    def available(self, program: str) -> bool:
        return shutil.which(program) is not None


def atomic_write_text(
    path: str,
    content: str,
    mode: Optional[int] = None,
    verify: Optional[Callable[[str], None]] = None,
) -> None:
    """
    Write content to a temporary sibling file and move it over path.

    The temporary file is removed if anything fails (including ``verify``,
    which receives the temporary path), so path is either the old file or
    the complete new one.
    """
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        if mode is not None:
            os.chmod(tmp_path, mode)
        if verify is not None:
            verify(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
