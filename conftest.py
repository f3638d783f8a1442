"""Shared pytest fixtures for the migration tools."""

from __future__ import annotations

from typing import Any

import pytest


class FakeGroupDirectory:
    """In-memory destination groups that records every call."""

    def __init__(
        self,
        groups: list[dict[str, Any]] | None = None,
        *,
        next_id: int = 10,
        responses: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self.groups = list(groups or [])
        self.next_id = next_id
        self.responses = dict(responses or {})
        self.calls: list[tuple[Any, ...]] = []

    def list_subgroups(self, parent_id: int, search: str) -> list[dict[str, Any]]:
        self.calls.append(("list", parent_id, search))
        # Substring match, like the GitLab search parameter
        return [
            {"id": group["id"], "path": group["path"]}
            for group in self.groups
            if group["parent_id"] == parent_id and search in group["path"]
        ]

    def create_group(self, name: str, path: str, parent_id: int) -> dict[str, Any]:
        self.calls.append(("create", name, path, parent_id))
        if path in self.responses:
            return self.responses[path]
        new_id = self.next_id
        self.next_id += 1
        self.groups.append({"id": new_id, "path": path, "parent_id": parent_id})
        return {"id": new_id}

    @property
    def creations(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == "create"]

    @property
    def lookups(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == "list"]


@pytest.fixture
def group_directory() -> FakeGroupDirectory:
    return FakeGroupDirectory()


@pytest.fixture
def make_group_directory():
    return FakeGroupDirectory
