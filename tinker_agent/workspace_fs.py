import os
from typing import List


class WorkspacePathError(ValueError):
    """Raised when a relative path resolves outside the workspace root."""


class FileSystem:
    """Filesystem operations the engine needs, relative to a workspace root."""

    root: str

    def resolve(self, rel: str) -> str:
        raise NotImplementedError

    def exists(self, rel: str) -> bool:
        raise NotImplementedError

    def is_dir(self, rel: str) -> bool:
        raise NotImplementedError

    def read_text(self, rel: str) -> str:
        raise NotImplementedError

    def write_text(self, rel: str, content: str) -> None:
        raise NotImplementedError

    def mkdir(self, rel: str) -> None:
        raise NotImplementedError

    def list_dir(self, rel: str) -> List[str]:
        raise NotImplementedError


class LocalFileSystem(FileSystem):
    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def resolve(self, rel: str) -> str:
        full = os.path.abspath(os.path.join(self.root, rel))
        if not full.startswith(self.root + os.sep) and full != self.root:
            raise WorkspacePathError(f"Path escapes workspace root: {rel}")
        return full

    def relpath(self, full: str) -> str:
        return os.path.relpath(full, self.root)

    def exists(self, rel: str) -> bool:
        return os.path.exists(self.resolve(rel))

    def is_dir(self, rel: str) -> bool:
        return os.path.isdir(self.resolve(rel))

    def read_text(self, rel: str) -> str:
        with open(self.resolve(rel), "r", encoding="utf-8", newline="") as f:
            return f.read()

    def write_text(self, rel: str, content: str) -> None:
        path = self.resolve(rel)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp, path)

    def mkdir(self, rel: str) -> None:
        os.makedirs(self.resolve(rel), exist_ok=True)

    def list_dir(self, rel: str) -> List[str]:
        base = self.resolve(rel)
        if not os.path.isdir(base):
            return []
        return sorted(os.listdir(base))
