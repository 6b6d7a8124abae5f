"""Read-only access to the user's vault on the local filesystem."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VaultFile:
    """Stat-level information about one vault file."""

    path: str  # vault-relative, POSIX separators
    size: int
    mtime: float
    ctime: float

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def extension(self) -> str:
        return PurePosixPath(self.path).suffix.lstrip(".").lower()

    @property
    def basename(self) -> str:
        """File name without its extension (``notes/a.md`` -> ``a``)."""
        return PurePosixPath(self.path).stem


@runtime_checkable
class Vault(Protocol):
    """Protocol for the vault collaborator.  The core never writes through it."""

    async def list_files(self, extensions: set[str] | None = None) -> list[VaultFile]:
        ...

    async def stat(self, path: str) -> VaultFile | None:
        ...

    async def read_text(self, path: str) -> str:
        ...

    async def read_bytes(self, path: str) -> bytes:
        ...

    def is_folder(self, path: str) -> bool:
        ...

    def list_folder(self, path: str) -> list[str]:
        ...


class FileSystemVault:
    """:class:`Vault` rooted at a directory.

    Parameters
    ----------
    root:
        Vault directory.  Must exist.
    """

    def __init__(self, root: Path) -> None:
        if not root.exists():
            raise FileNotFoundError(f"Vault directory does not exist: {root}")
        if not root.is_dir():
            raise NotADirectoryError(f"Vault path is not a directory: {root}")
        self._root = root.resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _abs(self, path: str) -> Path:
        resolved = (self._root / path).resolve()
        if resolved != self._root and self._root not in resolved.parents:
            raise ValueError(f"Path escapes the vault: {path}")
        return resolved

    def _to_vault_file(self, abs_path: Path) -> VaultFile:
        st = abs_path.stat()
        return VaultFile(
            path=abs_path.relative_to(self._root).as_posix(),
            size=st.st_size,
            mtime=st.st_mtime,
            ctime=st.st_ctime,
        )

    # -- enumeration --------------------------------------------------------

    async def list_files(self, extensions: set[str] | None = None) -> list[VaultFile]:
        """Every file under the root, sorted by path for deterministic scans.

        The directory walk runs in a worker thread.

        Parameters
        ----------
        extensions:
            Lower-case extensions without the dot.  ``None`` lists everything.
        """
        return await asyncio.to_thread(self._walk, extensions)

    def _walk(self, extensions: set[str] | None) -> list[VaultFile]:
        results: list[VaultFile] = []
        for abs_path in sorted(self._root.rglob("*")):
            if not abs_path.is_file():
                continue
            if extensions is not None and abs_path.suffix.lstrip(".").lower() not in extensions:
                continue
            try:
                results.append(self._to_vault_file(abs_path))
            except OSError:
                logger.warning("Skipping unreadable file: %s", abs_path, exc_info=True)
        return results

    async def stat(self, path: str) -> VaultFile | None:
        return await asyncio.to_thread(self._stat, path)

    def _stat(self, path: str) -> VaultFile | None:
        try:
            abs_path = self._abs(path)
        except ValueError:
            return None
        if not abs_path.is_file():
            return None
        try:
            return self._to_vault_file(abs_path)
        except OSError:
            return None

    def is_folder(self, path: str) -> bool:
        try:
            return self._abs(path.strip("/")).is_dir()
        except ValueError:
            return False

    def list_folder(self, path: str) -> list[str]:
        """Direct children of a folder as vault-relative paths."""
        folder = self._abs(path.strip("/"))
        if not folder.is_dir():
            return []
        return sorted(p.relative_to(self._root).as_posix() for p in folder.iterdir())

    # -- reads --------------------------------------------------------------

    async def read_text(self, path: str) -> str:
        abs_path = self._abs(path)
        return await asyncio.to_thread(abs_path.read_text, encoding="utf-8")

    async def read_bytes(self, path: str) -> bytes:
        abs_path = self._abs(path)
        return await asyncio.to_thread(abs_path.read_bytes)
