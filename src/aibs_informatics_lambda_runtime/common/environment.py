"""Runtime environment exposed to lambda handlers."""

__all__ = [
    "Environment",
]

import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, TextIO

from aibs_informatics_lambda_runtime.constants import AWS_LAMBDA_TASK_ROOT_KEY

TEMP_DIR_KEYS = ("TEMP", "TMP", "TMPDIR", "TEMPDIR")


@dataclass
class Environment:
    """Runtime environment of a lambda handler.

    Handlers receive this at construction time. It holds the task root the
    function code was deployed to, a line-oriented writer for trace output
    and the raw process environment.

    Attributes:
        root: The task root directory.
        writer: Text stream that `trace` writes lines to. Defaults to stdout.
        variables: The process environment variables.
    """

    root: str = "."
    writer: TextIO = field(default_factory=lambda: sys.stdout, repr=False)
    variables: Mapping[str, str] = field(default_factory=dict, repr=False)

    @classmethod
    def from_variables(
        cls, variables: Mapping[str, str], writer: Optional[TextIO] = None
    ) -> "Environment":
        """Create an environment from a variable mapping.

        The task root is read from `LAMBDA_TASK_ROOT` and defaults to the
        current directory.
        """
        return cls(
            root=variables.get(AWS_LAMBDA_TASK_ROOT_KEY) or ".",
            writer=writer or sys.stdout,
            variables=dict(variables),
        )

    def taskroot(self) -> Path:
        return Path(self.root)

    def path(self, name: str) -> Path:
        """Returns a path inside the task root."""
        return Path(self.root, name)

    def temp_dir(self) -> Path:
        for key in TEMP_DIR_KEYS:
            if self.variables.get(key):
                return Path(self.variables[key])
        return Path(tempfile.gettempdir())

    def variable(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.variables.get(name, default)

    def trace(self, line: str):
        """Writes a single trace line to the writer."""
        self.writer.write(f"{line}\n")
        self.writer.flush()
