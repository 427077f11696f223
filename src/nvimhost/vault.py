"""File provider: maps logical vault paths to files on disk."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol


@dataclass(frozen=True)
class VaultFile:
    """A file addressed by its vault-relative, '/'-separated path."""
    path: str

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def extension(self) -> str:
        suffix = PurePosixPath(self.path).suffix
        return suffix[1:] if suffix else ""

    @property
    def basename(self) -> str:
        name = self.name
        ext = self.extension
        return name[: -(len(ext) + 1)] if ext else name


class FileProvider(Protocol):
    def base_path(self) -> Path: ...

    def full_path(self, logical_path: str) -> str: ...


class FileSystemVault:
    def __init__(self, root: Path) -> None:
        self._root = Path(root).expanduser().resolve()

    def base_path(self) -> Path:
        return self._root

    def full_path(self, logical_path: str) -> str:
        return str(self._root.joinpath(*PurePosixPath(logical_path).parts))

    def file_for(self, path: Path) -> VaultFile:
        """VaultFile for an on-disk path; paths outside the vault keep their absolute form."""
        p = Path(path).expanduser().resolve()
        try:
            rel = p.relative_to(self._root)
        except ValueError:
            return VaultFile(path=p.as_posix())
        return VaultFile(path=rel.as_posix())
