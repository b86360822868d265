from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console

from loculus.core.config import AppPaths, RagSettings


@dataclass(slots=True)
class CLIContext:
    paths: AppPaths
    settings: RagSettings
    console: Console
