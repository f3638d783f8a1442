"""
Destination namespace resolution for GitLab to GitLab migrations.

Projects on the source instance live under nested groups such as
``team/backend/service``. On the destination instance the same hierarchy
is replicated below a single root group. This module walks the
slash-separated namespace of a project and makes sure every group level
exists, creating the missing ones, and returns the id of the deepest group.
"""

from typing import Optional, Dict, Any, List, Protocol

import gitlab
from rich.console import Console

console = Console()

# What ``dirname`` yields for a project that sits directly in the root group
ROOT_NAMESPACE = "."


class CreationError(Exception):
    """Raised when a group level cannot be created on the destination."""

    def __init__(self, path: str, segment: str, message: Optional[str]):
        self.path = path
        self.segment = segment
        self.message = message
        super().__init__(
            f"Failed to create subgroup '{segment}' for namespace '{path}'. "
            f"API response: {message}"
        )


class GroupDirectory(Protocol):
    """Group operations the resolver needs from the destination instance."""

    def list_subgroups(self, parent_id: int, search: str) -> List[Dict[str, Any]]:
        """Return subgroups of ``parent_id`` matching ``search`` (may be fuzzy)."""

    def create_group(self, name: str, path: str, parent_id: int) -> Dict[str, Any]:
        """Create a group and return ``{"id": ...}`` or ``{"message": ...}``."""


class GitLabGroupDirectory:
    """GroupDirectory backed by a python-gitlab client."""

    def __init__(self, gitlab_client: gitlab.Gitlab):
        self.gitlab = gitlab_client

    def list_subgroups(self, parent_id: int, search: str) -> List[Dict[str, Any]]:
        parent = self.gitlab.groups.get(parent_id, lazy=True)
        subgroups = parent.subgroups.list(search=search, get_all=True)
        return [{"id": group.id, "path": group.path} for group in subgroups]

    def create_group(self, name: str, path: str, parent_id: int) -> Dict[str, Any]:
        try:
            group = self.gitlab.groups.create({
                'name': name,
                'path': path,
                'parent_id': parent_id,
            })
        except gitlab.exceptions.GitlabCreateError as e:
            return {"message": e.error_message}
        return {"id": group.id}


class NamespaceCache:
    """Run-scoped mapping of fully resolved namespace paths to group ids."""

    def __init__(self):
        self._entries: Dict[str, int] = {}

    def get(self, path: str) -> Optional[int]:
        return self._entries.get(path)

    def store(self, path: str, group_id: int):
        self._entries[path] = group_id

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class NamespaceResolver:
    """Ensures a namespace exists below a root group on the destination."""

    def __init__(self, directory: GroupDirectory, cache: Optional[NamespaceCache] = None):
        self.directory = directory
        self.cache = cache if cache is not None else NamespaceCache()

    @staticmethod
    def is_root(path: str) -> bool:
        return path in (ROOT_NAMESPACE, "")

    def resolve(self, path: str, root_group_id: int) -> int:
        """Return the id of the leaf group of ``path``, creating missing levels.

        Every segment is looked up among the subgroups of the current parent
        and created when absent. Only the leaf id is cached; a cache hit
        returns without touching the destination. Raises ``CreationError``
        when a level cannot be created. Levels created before the failure
        are left in place and will be found on the next run.
        """
        if self.is_root(path):
            return root_group_id

        cached = self.cache.get(path)
        if cached is not None:
            return cached

        console.print(f"  - Ensuring destination namespace '{path}' exists...")

        current_parent_id = root_group_id
        for segment in path.split('/'):
            existing_id = self._find_subgroup(current_parent_id, segment)
            if existing_id is not None:
                current_parent_id = existing_id
                continue

            console.print(f"    - Creating subgroup '{segment}' under parent ID {current_parent_id}...")
            response = self.directory.create_group(segment, segment, current_parent_id)
            new_group_id = response.get("id")
            if new_group_id is None:
                raise CreationError(path, segment, response.get("message"))
            current_parent_id = new_group_id

        self.cache.store(path, current_parent_id)
        return current_parent_id

    def _find_subgroup(self, parent_id: int, segment: str) -> Optional[int]:
        # The search endpoint matches substrings, so "api" also returns "api-docs"
        for group in self.directory.list_subgroups(parent_id, segment):
            if group.get("path") == segment:
                return group.get("id")
        return None
