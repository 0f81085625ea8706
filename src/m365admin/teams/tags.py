"""Microsoft Teams tag operations via MS Graph."""

import fnmatch
import logging
from dataclasses import dataclass

from kiota_abstractions.api_error import APIError
from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph import GraphServiceClient
from msgraph.generated.models.teamwork_tag import TeamworkTag
from msgraph.generated.models.teamwork_tag_member import TeamworkTagMember
from msgraph.generated.teams.item.tags.tags_request_builder import TagsRequestBuilder
from msgraph.generated.teams.teams_request_builder import TeamsRequestBuilder

from m365admin.core.msgraph_client import get_graph_client

logger = logging.getLogger(__name__)

# Error codes Graph returns when a tag member points at a deleted principal
UNRESOLVABLE_MEMBER_CODES = frozenset({"NotFound", "ItemNotFound", "Request_ResourceNotFound"})


class TeamNotFoundError(LookupError):
    """The team does not exist or is not visible to the app."""


class TagCreateError(RuntimeError):
    """A tag could not be created (or never became visible)."""


class UnresolvableMemberError(RuntimeError):
    """A tag holds a member the directory can no longer resolve."""


class TagDeleteError(RuntimeError):
    """A tag could not be deleted (or was still visible afterwards)."""


@dataclass
class Team:
    """A team whose tags can be managed."""

    id: str
    display_name: str
    description: str | None = None


@dataclass
class TeamTag:
    """A tag scoped to a single team."""

    id: str
    team_id: str
    display_name: str
    description: str | None = None
    member_count: int | None = None


@dataclass
class TagMember:
    """One membership entry of a tag.

    ``entry_id`` is assigned by the tag and is what removal needs;
    ``user_id`` is the Entra object id of the member.
    """

    entry_id: str
    user_id: str
    display_name: str | None = None


def matches_description(description: str | None, pattern: str) -> bool:
    """Case-insensitive wildcard match (``*`` and ``?``) against a description."""
    return fnmatch.fnmatchcase((description or "").lower(), pattern.lower())


def _status_code(error: APIError) -> int | None:
    return getattr(error, "response_status_code", None)


def _error_code(error: APIError) -> str | None:
    main_error = getattr(error, "error", None)
    return getattr(main_error, "code", None) if main_error else None


class TeamsTagManager:
    """Manage team tags in Microsoft Teams."""

    def __init__(self) -> None:
        """Initialize the tag manager."""
        self.client: GraphServiceClient = get_graph_client()

    async def list_teams(self, description_pattern: str = "*") -> list[Team]:
        """Fetch teams whose description matches a wildcard pattern.

        Args:
            description_pattern: Case-insensitive pattern, e.g. ``"*Department*"``

        Returns:
            List of matching teams
        """
        logger.info(f"Fetching teams matching description '{description_pattern}'")

        query_params = TeamsRequestBuilder.TeamsRequestBuilderGetQueryParameters(
            select=["id", "displayName", "description"],
        )
        config = RequestConfiguration(query_parameters=query_params)
        result = await self.client.teams.get(request_configuration=config)

        teams = []
        while result:
            for team in result.value or []:
                if team.id and matches_description(team.description, description_pattern):
                    teams.append(
                        Team(
                            id=team.id,
                            display_name=team.display_name or "",
                            description=team.description,
                        )
                    )
            if not result.odata_next_link:
                break
            result = await self.client.teams.with_url(result.odata_next_link).get()

        logger.info(f"Found {len(teams)} matching teams")
        return teams

    async def get_team(self, team_id: str) -> Team:
        """Fetch a single team.

        Raises:
            TeamNotFoundError: If the team does not exist
        """
        try:
            team = await self.client.teams.by_team_id(team_id).get()
        except APIError as e:
            if _status_code(e) == 404:
                raise TeamNotFoundError(f"Team not found: {team_id}") from e
            raise
        if not team:
            raise TeamNotFoundError(f"Team not found: {team_id}")
        return Team(
            id=team.id or team_id,
            display_name=team.display_name or "",
            description=team.description,
        )

    def _to_team_tag(self, team_id: str, tag: TeamworkTag) -> TeamTag:
        return TeamTag(
            id=tag.id or "",
            team_id=team_id,
            display_name=tag.display_name or "",
            description=tag.description,
            member_count=tag.member_count,
        )

    async def get_tag(self, team_id: str, display_name: str) -> TeamTag | None:
        """Find a tag on a team by exact display name.

        Returns:
            TeamTag if found, None otherwise

        Raises:
            TeamNotFoundError: If the team does not exist
        """
        escaped = display_name.replace("'", "''")
        query_params = TagsRequestBuilder.TagsRequestBuilderGetQueryParameters(
            filter=f"displayName eq '{escaped}'",
        )
        config = RequestConfiguration(query_parameters=query_params)

        try:
            result = await self.client.teams.by_team_id(team_id).tags.get(
                request_configuration=config
            )
        except APIError as e:
            if _status_code(e) == 404:
                raise TeamNotFoundError(f"Team not found: {team_id}") from e
            raise

        for tag in (result.value if result else None) or []:
            # $filter on tags is case-insensitive; the lookup is exact
            if tag.display_name == display_name:
                return self._to_team_tag(team_id, tag)
        return None

    async def create_tag(
        self,
        team_id: str,
        display_name: str,
        description: str,
        seed_user_id: str,
    ) -> TeamTag:
        """Create a tag seeded with a single member.

        Teams refuses to create an empty tag, so a placeholder member is
        added at creation time and removed by the first sync.

        Raises:
            TagCreateError: If Graph rejects the request
        """
        tag = TeamworkTag(
            display_name=display_name,
            description=description or None,
            members=[TeamworkTagMember(user_id=seed_user_id)],
        )

        try:
            created = await self.client.teams.by_team_id(team_id).tags.post(tag)
        except APIError as e:
            raise TagCreateError(f"Failed to create tag {display_name} in {team_id}: {e}") from e

        if not created or not created.id:
            raise TagCreateError(f"Graph returned no tag for {display_name} in {team_id}")

        logger.info(f"Created tag {display_name} in team {team_id} (ID: {created.id})")
        return self._to_team_tag(team_id, created)

    async def delete_tag(self, team_id: str, tag_id: str) -> bool:
        """Delete a tag.

        Returns:
            True if successful
        """
        try:
            await self.client.teams.by_team_id(team_id).tags.by_teamwork_tag_id(tag_id).delete()
            logger.info(f"Deleted tag {tag_id} from team {team_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete tag {tag_id} from team {team_id}: {e}")
            return False

    async def list_tag_members(self, team_id: str, tag_id: str) -> list[TagMember]:
        """Get every membership entry of a tag.

        A member whose underlying user was deleted usually makes Graph fail
        the whole read; that case is raised explicitly. Graph may also drop
        such entries and return an empty page, so callers compare an empty
        result with the tag's ``member_count``.

        Raises:
            UnresolvableMemberError: If a member can no longer be resolved
        """
        members_builder = self.client.teams.by_team_id(team_id).tags.by_teamwork_tag_id(
            tag_id
        ).members

        try:
            result = await members_builder.get()
            members: list[TagMember] = []
            while result:
                for member in result.value or []:
                    if not member.user_id:
                        raise UnresolvableMemberError(
                            f"Tag {tag_id} in team {team_id} has entry {member.id} with no user"
                        )
                    members.append(
                        TagMember(
                            entry_id=member.id or "",
                            user_id=member.user_id,
                            display_name=member.display_name,
                        )
                    )
                if not result.odata_next_link:
                    break
                result = await members_builder.with_url(result.odata_next_link).get()
        except APIError as e:
            if _status_code(e) == 404 or _error_code(e) in UNRESOLVABLE_MEMBER_CODES:
                raise UnresolvableMemberError(
                    f"Members of tag {tag_id} in team {team_id} could not be resolved: {e}"
                ) from e
            raise

        return members

    async def add_tag_member(self, team_id: str, tag_id: str, user_id: str) -> bool:
        """Add a user to a tag.

        Returns:
            True if successful
        """
        try:
            await (
                self.client.teams.by_team_id(team_id)
                .tags.by_teamwork_tag_id(tag_id)
                .members.post(TeamworkTagMember(user_id=user_id))
            )
            logger.info(f"Added user {user_id} to tag {tag_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to add user {user_id} to tag {tag_id}: {e}")
            return False

    async def remove_tag_member(self, team_id: str, tag_id: str, entry_id: str) -> bool:
        """Remove a membership entry from a tag.

        Args:
            entry_id: The tag's own membership id (not the user id)

        Returns:
            True if successful
        """
        try:
            await (
                self.client.teams.by_team_id(team_id)
                .tags.by_teamwork_tag_id(tag_id)
                .members.by_teamwork_tag_member_id(entry_id)
                .delete()
            )
            logger.info(f"Removed entry {entry_id} from tag {tag_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to remove entry {entry_id} from tag {tag_id}: {e}")
            return False
