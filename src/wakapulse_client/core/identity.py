"""Project and language resolution for editor entities."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import PurePath, Path
from typing import Dict, Optional

DEFAULT_PROJECT = "Unreal Engine"
DEFAULT_LANGUAGE = "Unreal Engine"
PROJECT_MARKER_SUFFIX = ".uproject"
MAX_SEARCH_DEPTH = 6  # Parent directories searched above a file for a project marker

LANGUAGE_BY_EXTENSION: Dict[str, str] = {
    ".cpp": "C++",
    ".cc": "C++",
    ".h": "C++",
    ".hpp": "C++",
    ".inl": "C++",
    ".cs": "C#",
    ".py": "Python",
    ".usf": "HLSL",
    ".ush": "HLSL",
    ".hlsl": "HLSL",
    ".uasset": "Blueprints",
    ".umap": "Unreal Engine",
    ".uproject": "JSON",
    ".uplugin": "JSON",
    ".json": "JSON",
    ".ini": "INI",
    ".lua": "Lua",
}


@dataclass(frozen=True)
class Identity:
    """Resolved identity of an entity."""

    project_id: str
    language: str


def language_for_path(path: str) -> str:
    """Language hint from the file extension."""
    return LANGUAGE_BY_EXTENSION.get(PurePath(path).suffix.lower(), DEFAULT_LANGUAGE)


class IdentityResolver:
    """Resolves (project, language) for a file path.

    The project is the stem of the nearest ``*.uproject`` at most
    ``max_search_depth`` directories above the path, then the configured
    default project, then ``"Unreal Engine"``. Every directory is listed at
    most once; sibling files share the cached answers of their ancestors.
    """

    def __init__(self, default_project: str = "", search_filesystem: bool = True, max_search_depth: int = MAX_SEARCH_DEPTH):
        self.default_project = default_project or DEFAULT_PROJECT
        self.search_filesystem = search_filesystem
        self.max_search_depth = max_search_depth
        self._marker_by_dir: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def resolve(self, path: str) -> Identity:
        project = self._find_project(path) if self.search_filesystem else None
        return Identity(project_id=project or self.default_project, language=language_for_path(path))

    def _find_project(self, path: str) -> Optional[str]:
        directory = Path(path).parent
        candidates = [directory, *directory.parents][: self.max_search_depth + 1]

        for candidate in candidates:
            project = self._project_in(candidate)
            if project:
                return project
        return None

    def _project_in(self, directory: Path) -> Optional[str]:
        key = str(directory)
        with self._lock:
            if key in self._marker_by_dir:
                return self._marker_by_dir[key]

        try:
            markers = sorted(directory.glob(f"*{PROJECT_MARKER_SUFFIX}"))
        except OSError:
            markers = []
        project = markers[0].stem if markers else None

        with self._lock:
            self._marker_by_dir[key] = project
        return project
