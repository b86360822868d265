from __future__ import annotations

from pathlib import Path

from loculus.core.errors import ValidationError


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_text_file(path: Path) -> str:
    resolved = path.expanduser()
    if not resolved.is_file():
        raise ValidationError(f"File not found: {resolved}")
    try:
        return resolved.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ValidationError(f"File is not UTF-8 text: {resolved}") from exc
