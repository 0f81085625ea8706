"""Tests for m365admin.teams.tags."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from kiota_abstractions.api_error import APIError

from m365admin.teams.tags import (
    TagCreateError,
    TeamNotFoundError,
    TeamsTagManager,
    UnresolvableMemberError,
    matches_description,
)


def _api_error(status: int | None = None, code: str | None = None) -> APIError:
    error = APIError(message="graph error", response_status_code=status)
    if code:
        error.error = MagicMock(code=code)
    return error


def _page(values, next_link=None):
    result = MagicMock()
    result.value = values
    result.odata_next_link = next_link
    return result


def _graph_team(team_id, name, description):
    team = MagicMock()
    team.id = team_id
    team.display_name = name
    team.description = description
    return team


def _graph_tag(tag_id, name, member_count=1):
    tag = MagicMock()
    tag.id = tag_id
    tag.display_name = name
    tag.description = None
    tag.member_count = member_count
    return tag


def _graph_member(entry_id, user_id, name=None):
    member = MagicMock()
    member.id = entry_id
    member.user_id = user_id
    member.display_name = name
    return member


class TestMatchesDescription:
    """Tests for matches_description."""

    @pytest.mark.parametrize(
        ("description", "pattern", "expected"),
        [
            ("Station 31 crew", "*station*", True),
            ("STATION 31", "*station*", True),
            ("Admin team", "*station*", False),
            ("Crew A", "Crew ?", True),
            ("Crew AB", "Crew ?", False),
            (None, "*", True),
            (None, "*x*", False),
        ],
    )
    def test_wildcards(self, description, pattern, expected):
        assert matches_description(description, pattern) is expected


class TestTeamsTagManager:
    """Base fixtures for TeamsTagManager tests."""

    @pytest.fixture
    def mock_client(self):
        """Create a mock Graph client."""
        return MagicMock()

    @pytest.fixture
    def manager(self, mock_client):
        """Create a TeamsTagManager with mocked client."""
        with patch("m365admin.teams.tags.get_graph_client", return_value=mock_client):
            manager = TeamsTagManager()
        return manager

    @pytest.fixture
    def tags_builder(self, mock_client):
        return mock_client.teams.by_team_id.return_value.tags

    @pytest.fixture
    def members_builder(self, tags_builder):
        return tags_builder.by_teamwork_tag_id.return_value.members


class TestListTeams(TestTeamsTagManager):
    """Tests for list_teams."""

    async def test_filters_by_description(self, manager, mock_client):
        mock_client.teams.get = AsyncMock(
            return_value=_page(
                [
                    _graph_team("t1", "Station 31", "Station crew"),
                    _graph_team("t2", "Admin", "Back office"),
                ]
            )
        )

        teams = await manager.list_teams("*crew*")

        assert [t.id for t in teams] == ["t1"]
        assert teams[0].display_name == "Station 31"

    async def test_follows_pagination(self, manager, mock_client):
        mock_client.teams.get = AsyncMock(
            return_value=_page([_graph_team("t1", "A", "")], next_link="https://next")
        )
        mock_client.teams.with_url = MagicMock(
            return_value=MagicMock(
                get=AsyncMock(return_value=_page([_graph_team("t2", "B", "")]))
            )
        )

        teams = await manager.list_teams()

        assert [t.id for t in teams] == ["t1", "t2"]
        mock_client.teams.with_url.assert_called_once_with("https://next")


class TestGetTeam(TestTeamsTagManager):
    """Tests for get_team."""

    async def test_returns_team(self, manager, mock_client):
        mock_client.teams.by_team_id.return_value.get = AsyncMock(
            return_value=_graph_team("t1", "Station 31", "crew")
        )

        team = await manager.get_team("t1")

        assert team.display_name == "Station 31"

    async def test_404_raises_team_not_found(self, manager, mock_client):
        mock_client.teams.by_team_id.return_value.get = AsyncMock(side_effect=_api_error(404))

        with pytest.raises(TeamNotFoundError):
            await manager.get_team("missing")

    async def test_other_errors_propagate(self, manager, mock_client):
        mock_client.teams.by_team_id.return_value.get = AsyncMock(side_effect=_api_error(500))

        with pytest.raises(APIError):
            await manager.get_team("t1")


class TestGetTag(TestTeamsTagManager):
    """Tests for get_tag."""

    async def test_exact_match_only(self, manager, tags_builder):
        tags_builder.get = AsyncMock(
            return_value=_page(
                [_graph_tag("tag-0", "leadership"), _graph_tag("tag-1", "Leadership")]
            )
        )

        tag = await manager.get_tag("t1", "Leadership")

        assert tag.id == "tag-1"
        assert tag.team_id == "t1"

    async def test_absent_returns_none(self, manager, tags_builder):
        tags_builder.get = AsyncMock(return_value=_page([]))

        assert await manager.get_tag("t1", "Leadership") is None

    async def test_escapes_quotes_in_filter(self, manager, tags_builder):
        tags_builder.get = AsyncMock(return_value=_page([]))

        await manager.get_tag("t1", "O'Brien crew")

        config = tags_builder.get.call_args.kwargs["request_configuration"]
        assert config.query_parameters.filter == "displayName eq 'O''Brien crew'"

    async def test_404_raises_team_not_found(self, manager, tags_builder):
        tags_builder.get = AsyncMock(side_effect=_api_error(404))

        with pytest.raises(TeamNotFoundError):
            await manager.get_tag("missing", "Leadership")


class TestCreateTag(TestTeamsTagManager):
    """Tests for create_tag."""

    async def test_creates_with_seed_member(self, manager, tags_builder):
        tags_builder.post = AsyncMock(return_value=_graph_tag("tag-1", "Leadership"))

        tag = await manager.create_tag("t1", "Leadership", "desc", "seed-1")

        assert tag.id == "tag-1"
        body = tags_builder.post.call_args.args[0]
        assert body.display_name == "Leadership"
        assert [m.user_id for m in body.members] == ["seed-1"]

    async def test_api_error_raises_create_error(self, manager, tags_builder):
        tags_builder.post = AsyncMock(side_effect=_api_error(400))

        with pytest.raises(TagCreateError):
            await manager.create_tag("t1", "Leadership", "", "seed-1")

    async def test_empty_response_raises_create_error(self, manager, tags_builder):
        tags_builder.post = AsyncMock(return_value=None)

        with pytest.raises(TagCreateError):
            await manager.create_tag("t1", "Leadership", "", "seed-1")


class TestDeleteTag(TestTeamsTagManager):
    """Tests for delete_tag."""

    async def test_success(self, manager, tags_builder):
        tags_builder.by_teamwork_tag_id.return_value.delete = AsyncMock()

        assert await manager.delete_tag("t1", "tag-1") is True
        tags_builder.by_teamwork_tag_id.assert_called_with("tag-1")

    async def test_failure(self, manager, tags_builder):
        tags_builder.by_teamwork_tag_id.return_value.delete = AsyncMock(
            side_effect=Exception("API error")
        )

        assert await manager.delete_tag("t1", "tag-1") is False


class TestListTagMembers(TestTeamsTagManager):
    """Tests for list_tag_members."""

    async def test_returns_members(self, manager, members_builder):
        members_builder.get = AsyncMock(
            return_value=_page([_graph_member("e1", "u1", "Alice"), _graph_member("e2", "u2")])
        )

        members = await manager.list_tag_members("t1", "tag-1")

        assert [(m.entry_id, m.user_id) for m in members] == [("e1", "u1"), ("e2", "u2")]
        assert members[0].display_name == "Alice"

    async def test_empty_tag_is_not_a_fault(self, manager, members_builder):
        members_builder.get = AsyncMock(return_value=_page([]))

        assert await manager.list_tag_members("t1", "tag-1") == []

    async def test_follows_pagination(self, manager, members_builder):
        members_builder.get = AsyncMock(
            return_value=_page([_graph_member("e1", "u1")], next_link="https://next")
        )
        members_builder.with_url = MagicMock(
            return_value=MagicMock(get=AsyncMock(return_value=_page([_graph_member("e2", "u2")])))
        )

        members = await manager.list_tag_members("t1", "tag-1")

        assert [m.user_id for m in members] == ["u1", "u2"]

    async def test_entry_without_user_is_unresolvable(self, manager, members_builder):
        members_builder.get = AsyncMock(return_value=_page([_graph_member("e1", None)]))

        with pytest.raises(UnresolvableMemberError):
            await manager.list_tag_members("t1", "tag-1")

    async def test_404_is_unresolvable(self, manager, members_builder):
        members_builder.get = AsyncMock(side_effect=_api_error(404))

        with pytest.raises(UnresolvableMemberError):
            await manager.list_tag_members("t1", "tag-1")

    async def test_not_found_code_is_unresolvable(self, manager, members_builder):
        members_builder.get = AsyncMock(side_effect=_api_error(400, code="ItemNotFound"))

        with pytest.raises(UnresolvableMemberError):
            await manager.list_tag_members("t1", "tag-1")

    async def test_other_errors_propagate(self, manager, members_builder):
        members_builder.get = AsyncMock(side_effect=_api_error(503))

        with pytest.raises(APIError):
            await manager.list_tag_members("t1", "tag-1")


class TestTagMemberMutations(TestTeamsTagManager):
    """Tests for add_tag_member and remove_tag_member."""

    async def test_add_success(self, manager, members_builder):
        members_builder.post = AsyncMock()

        assert await manager.add_tag_member("t1", "tag-1", "u1") is True
        assert members_builder.post.call_args.args[0].user_id == "u1"

    async def test_add_failure(self, manager, members_builder):
        members_builder.post = AsyncMock(side_effect=Exception("API error"))

        assert await manager.add_tag_member("t1", "tag-1", "u1") is False

    async def test_remove_uses_entry_id(self, manager, members_builder):
        members_builder.by_teamwork_tag_member_id.return_value.delete = AsyncMock()

        assert await manager.remove_tag_member("t1", "tag-1", "entry-9") is True
        members_builder.by_teamwork_tag_member_id.assert_called_once_with("entry-9")

    async def test_remove_failure(self, manager, members_builder):
        members_builder.by_teamwork_tag_member_id.return_value.delete = AsyncMock(
            side_effect=Exception("API error")
        )

        assert await manager.remove_tag_member("t1", "tag-1", "entry-9") is False
