"""Shared pytest fixtures."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from m365admin.teams.tags import (
    TagCreateError,
    TagMember,
    Team,
    TeamNotFoundError,
    TeamTag,
    UnresolvableMemberError,
)


@pytest.fixture
def poll_sleep():
    """Skip real waits between visibility checks."""
    with patch("m365admin.core.polling._sleep", new=AsyncMock()) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def temp_backup_dir(tmp_path):
    """Temporary directory for backup tests."""
    backup_dir = tmp_path / "backups"
    backup_dir.mkdir()
    return backup_dir


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set mock environment variables for testing."""
    monkeypatch.setenv("MS_GRAPH_TENANT_ID", "test-tenant-id")
    monkeypatch.setenv("MS_GRAPH_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("MS_GRAPH_CLIENT_SECRET", "test-client-secret")
    monkeypatch.delenv("TAG_SYNC_CONTROL_GROUP_ID", raising=False)
    monkeypatch.delenv("TAG_SYNC_SEED_USER_ID", raising=False)


@pytest.fixture
def mock_graph_client():
    """Mock MS Graph client for testing."""
    client = MagicMock()
    return client


class FakeTagService:
    """In-memory stand-in for TeamsTagManager.

    Each team holds at most one tag per name. ``calls`` records every
    mutation in order so tests can assert on ordering and on the absence
    of writes.
    """

    def __init__(self, teams=None):
        self.teams = {t: Team(id=t, display_name=f"Team {t}") for t in (teams or ["team-1"])}
        self.tags = {}
        self.members = {}
        self.calls = []
        self.missing_teams = set()
        self.unresolvable_reads = 0
        self.fail_create = False
        self.invisible_after_create = False
        self.fail_delete = False
        self.delete_not_applied = False
        self.reject_add = set()
        self.raise_on_add = set()
        self.reject_remove = set()
        self._next_id = 0

    def _new_id(self, prefix):
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def seed(self, team_id, tag_name, user_ids):
        """Put an existing tag with the given members on a team."""
        tag = TeamTag(id=self._new_id("tag"), team_id=team_id, display_name=tag_name)
        self.tags[(team_id, tag_name)] = tag
        self.members[tag.id] = [
            TagMember(entry_id=self._new_id("entry"), user_id=u) for u in user_ids
        ]
        return tag

    def member_ids(self, team_id, tag_name):
        tag = self.tags.get((team_id, tag_name))
        return {m.user_id for m in self.members[tag.id]} if tag else None

    def mutations(self, kind=None):
        return [c for c in self.calls if kind is None or c[0] == kind]

    async def list_teams(self, description_pattern="*"):
        return list(self.teams.values())

    async def get_team(self, team_id):
        if team_id not in self.teams:
            raise TeamNotFoundError(f"Team not found: {team_id}")
        return self.teams[team_id]

    async def get_tag(self, team_id, display_name):
        if team_id in self.missing_teams:
            raise TeamNotFoundError(f"Team not found: {team_id}")
        if self.invisible_after_create:
            return None
        return self.tags.get((team_id, display_name))

    async def create_tag(self, team_id, display_name, description, seed_user_id):
        self.calls.append(("create", team_id, display_name, seed_user_id))
        if self.fail_create:
            raise TagCreateError("rejected")
        return self.seed(team_id, display_name, [seed_user_id])

    async def delete_tag(self, team_id, tag_id):
        self.calls.append(("delete", team_id, tag_id))
        if self.fail_delete:
            return False
        if self.delete_not_applied:
            return True
        for key, tag in list(self.tags.items()):
            if tag.id == tag_id:
                del self.tags[key]
        self.members.pop(tag_id, None)
        return True

    async def list_tag_members(self, team_id, tag_id):
        if self.unresolvable_reads > 0:
            self.unresolvable_reads -= 1
            raise UnresolvableMemberError(f"Tag {tag_id} has an unresolvable member")
        return list(self.members[tag_id])

    async def add_tag_member(self, team_id, tag_id, user_id):
        self.calls.append(("add", team_id, user_id))
        if user_id in self.raise_on_add:
            raise RuntimeError(f"service fault adding {user_id}")
        if user_id in self.reject_add:
            return False
        self.members[tag_id].append(TagMember(entry_id=self._new_id("entry"), user_id=user_id))
        return True

    async def remove_tag_member(self, team_id, tag_id, entry_id):
        entry = next(m for m in self.members[tag_id] if m.entry_id == entry_id)
        self.calls.append(("remove", team_id, entry.user_id))
        if entry.user_id in self.reject_remove:
            return False
        self.members[tag_id].remove(entry)
        return True


@pytest.fixture
def make_tag_service():
    """Factory for in-memory tag services."""
    return FakeTagService
