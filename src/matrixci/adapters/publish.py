# adapters/publish.py
from __future__ import annotations

import shutil
from pathlib import Path
from typing import List, Protocol

from matrixci.ui.console import get_console
from matrixci.workers import list_matching


class Publisher(Protocol):
    def publish(self, source_dir: Path, pattern: str, destination: str) -> List[Path]: ...


class DirectoryPublisher:
    """
    Copies every file in source_dir matching pattern into
    <root>/<destination>.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def publish(self, source_dir: Path, pattern: str, destination: str) -> List[Path]:
        target = self.root / destination
        target.mkdir(parents=True, exist_ok=True)
        published: List[Path] = []
        for path in list_matching(source_dir, pattern):
            dest = target / path.name
            shutil.copy2(path, dest)
            published.append(dest)
        get_console().print_info(f"Published {len(published)} file(s) matching {pattern!r} to {target}")
        return published
