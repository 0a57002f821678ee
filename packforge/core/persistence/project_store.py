"""
Project store — where pipelines load projects from.

Pipelines only call ``try_load(project_id)``; a None answer becomes a
``project_not_found`` issue, never an exception.

    InMemoryProjectStore   projects registered in-process (SDK, tests)
    FileProjectStore       <root>/<id>.yml|.yaml|.json documents
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from packforge.core.config.loader import ConfigError, load_project, save_project
from packforge.core.models.packaging import PackagingProject

logger = logging.getLogger(__name__)

_SUFFIXES = (".yml", ".yaml", ".json")


class ProjectStore(ABC):
    @abstractmethod
    def try_load(self, project_id: str) -> PackagingProject | None:
        ...


class InMemoryProjectStore(ProjectStore):
    def __init__(self, projects: Iterable[PackagingProject] = ()):
        self._projects: dict[str, PackagingProject] = {}
        self._lock = threading.Lock()
        for project in projects:
            self.save(project)

    def save(self, project: PackagingProject) -> None:
        with self._lock:
            self._projects[project.id] = project

    def try_load(self, project_id: str) -> PackagingProject | None:
        with self._lock:
            return self._projects.get(project_id)


class FileProjectStore(ProjectStore):
    def __init__(self, root: Path | str):
        self._root = Path(root)

    def path_for(self, project_id: str) -> Path | None:
        for suffix in _SUFFIXES:
            candidate = self._root / f"{project_id}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def try_load(self, project_id: str) -> PackagingProject | None:
        path = self.path_for(project_id)
        if path is None:
            return None
        try:
            return load_project(path)
        except ConfigError as e:
            logger.warning("Project '%s' could not be loaded: %s", project_id, e)
            return None

    def save(self, project: PackagingProject) -> Path:
        path = self.path_for(project.id) or self._root / f"{project.id}.json"
        save_project(project, path)
        return path
