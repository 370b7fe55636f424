"""Runtime state container for CLI context."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from rich.console import Console


@dataclass
class CLIState:
    """Global CLI options, merged configuration and the output console."""

    json_output: bool
    plain_output: bool
    verbose: bool
    quiet: bool
    config_path: Path
    config: Dict[str, Any]
    console: Console

    @property
    def log_level(self) -> int:
        if self.verbose:
            return logging.DEBUG
        if self.quiet:
            return logging.ERROR
        return logging.WARNING
