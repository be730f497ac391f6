"""Ingestion helpers."""

from __future__ import annotations

import pathlib
from typing import Iterator


def read_jsonl_file(path: str | pathlib.Path) -> Iterator[str]:
    """Yield the non-blank lines of a downloaded bulk result file."""
    with pathlib.Path(path).open(encoding="utf-8") as handle:
        for line in handle:
            if line.strip():
                yield line
