"""File system access for chart directories and generated files.

All paths handed to the store are relative to the repository root unless they
are already absolute.
"""

import logging
from pathlib import Path
from typing import Any

import aiofiles
from aiofiles.os import listdir, makedirs
from aiofiles.ospath import exists, isdir
import yaml

from .exceptions import InputException
from .manifest import CHART_MANIFEST, Chart, ChartKind, ChartMetadata

__all__ = [
    "ArtifactStore",
]

_LOGGER = logging.getLogger(__name__)


class ArtifactStore:
    """Reads and writes files below a repository root."""

    def __init__(self, root: Path) -> None:
        """Initialize ArtifactStore."""
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: Path | str) -> Path:
        """Return the absolute path for a repository relative path."""
        return self._root / path

    async def exists(self, path: Path | str) -> bool:
        return await exists(str(self.resolve(path)))

    async def is_dir(self, path: Path | str) -> bool:
        return await isdir(str(self.resolve(path)))

    async def mkdir(self, path: Path | str) -> Path:
        full_path = self.resolve(path)
        await makedirs(str(full_path), exist_ok=True)
        return full_path

    async def read_bytes(self, path: Path | str) -> bytes:
        async with aiofiles.open(str(self.resolve(path)), mode="rb") as f:
            return await f.read()

    async def read_text(self, path: Path | str) -> str:
        async with aiofiles.open(str(self.resolve(path))) as f:
            return await f.read()

    async def write_bytes(self, path: Path | str, data: bytes) -> Path:
        full_path = self.resolve(path)
        await makedirs(str(full_path.parent), exist_ok=True)
        async with aiofiles.open(str(full_path), mode="wb") as f:
            await f.write(data)
        return full_path

    async def write_text(self, path: Path | str, content: str) -> Path:
        full_path = self.resolve(path)
        await makedirs(str(full_path.parent), exist_ok=True)
        async with aiofiles.open(str(full_path), mode="w") as f:
            await f.write(content)
        return full_path

    async def read_yaml(self, path: Path | str) -> Any:
        content = await self.read_text(path)
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as err:
            raise InputException(f"Unable to parse {path} as yaml: {err}") from err

    async def read_chart(
        self, chart_dir: Path | str, kind: ChartKind, icon: str | None = None
    ) -> Chart:
        """Read the chart manifest in a chart directory."""
        manifest_path = Path(chart_dir) / CHART_MANIFEST
        if not await self.exists(manifest_path):
            raise InputException(f"Chart directory {chart_dir} has no {CHART_MANIFEST}")
        metadata = ChartMetadata.parse_doc(await self.read_yaml(manifest_path))
        has_icon = bool(icon) and await self.exists(Path(chart_dir) / str(icon))
        return Chart(
            name=metadata.name,
            kind=kind,
            version=metadata.version,
            path=Path(chart_dir),
            metadata=metadata,
            has_icon=has_icon,
        )

    async def list_charts(self, root: Path | str) -> list[str]:
        """Return the names of chart directories directly below a root."""
        if not await self.is_dir(root):
            return []
        names = []
        for entry in sorted(await listdir(str(self.resolve(root)))):
            if await self.exists(Path(root) / entry / CHART_MANIFEST):
                names.append(entry)
        return names
