"""Team tag synchronization from an Entra ID security group.

Keeps a Teams tag in every matching team in step with the members of a
control group. The tag is created on first use, and rebuilt when Graph can
no longer read its membership because a member's account was deleted
before it was removed from the tag.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from m365admin.core.backup import backup_tag_members
from m365admin.core.config import TagSyncConfig
from m365admin.core.polling import wait_until
from m365admin.entra.groups import EntraGroupManager
from m365admin.teams.tags import (
    TagCreateError,
    TagDeleteError,
    TagMember,
    Team,
    TeamNotFoundError,
    TeamsTagManager,
    TeamTag,
    UnresolvableMemberError,
)

logger = logging.getLogger(__name__)


class TagService(Protocol):
    """Tag operations the reconciler depends on (implemented by TeamsTagManager)."""

    async def get_tag(self, team_id: str, display_name: str) -> TeamTag | None: ...

    async def create_tag(
        self, team_id: str, display_name: str, description: str, seed_user_id: str
    ) -> TeamTag: ...

    async def delete_tag(self, team_id: str, tag_id: str) -> bool: ...

    async def list_tag_members(self, team_id: str, tag_id: str) -> list[TagMember]: ...

    async def add_tag_member(self, team_id: str, tag_id: str, user_id: str) -> bool: ...

    async def remove_tag_member(self, team_id: str, tag_id: str, entry_id: str) -> bool: ...


@dataclass
class TagDelta:
    """Membership changes needed to bring a tag in line with the control group.

    All three lists are sorted so changes are applied in a stable order.
    """

    to_add: list[str] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        """Check if anything needs to be added or removed."""
        return bool(self.to_add) or bool(self.to_remove)


def compute_delta(reference_ids: Iterable[str], current_ids: Iterable[str]) -> TagDelta:
    """Partition the union of both sets into adds, removes and unchanged."""
    reference = set(reference_ids)
    current = set(current_ids)
    return TagDelta(
        to_add=sorted(reference - current),
        to_remove=sorted(current - reference),
        unchanged=sorted(reference & current),
    )


@dataclass
class TagSyncResult:
    """Result of syncing the tag in a single team."""

    team_id: str
    team_name: str
    tag_name: str
    tag_id: str | None = None
    created: bool = False
    recovered: bool = False
    members_added: list[str] = field(default_factory=list)
    members_removed: list[str] = field(default_factory=list)
    add_failures: list[str] = field(default_factory=list)
    remove_failures: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def has_changes(self) -> bool:
        """Check if any changes were made."""
        return (
            self.created
            or self.recovered
            or bool(self.members_added)
            or bool(self.members_removed)
        )

    @property
    def errors(self) -> list[str]:
        """All failures for this team, fatal one first."""
        errors = [self.error] if self.error else []
        return errors + self.add_failures + self.remove_failures


@dataclass
class FullTagSyncResult:
    """Result of syncing the tag across all matching teams."""

    tag_name: str
    reference_count: int = 0
    teams: list[TagSyncResult] = field(default_factory=list)

    @property
    def total_created(self) -> int:
        """Count of tags created."""
        return sum(1 for t in self.teams if t.created)

    @property
    def total_recovered(self) -> int:
        """Count of tags rebuilt after an unresolvable member."""
        return sum(1 for t in self.teams if t.recovered)

    @property
    def total_added(self) -> int:
        """Count of members added across all teams."""
        return sum(len(t.members_added) for t in self.teams)

    @property
    def total_removed(self) -> int:
        """Count of members removed across all teams."""
        return sum(len(t.members_removed) for t in self.teams)

    @property
    def total_failed_teams(self) -> int:
        """Count of teams that could not be synced at all."""
        return sum(1 for t in self.teams if t.error)

    @property
    def total_errors(self) -> int:
        """Count of errors across all teams."""
        return sum(len(t.errors) for t in self.teams)


class TagReconciler:
    """Reconcile one team's tag against a reference set of user ids."""

    def __init__(
        self,
        service: TagService,
        seed_user_id: str,
        tag_description: str = "",
        create_settle_seconds: float = 0.2,
        delete_settle_seconds: float = 5.0,
        settle_timeout_seconds: float = 60.0,
        dry_run: bool = False,
        backup_dir: Path | str | None = None,
        backup: bool = False,
    ) -> None:
        """Initialize the reconciler.

        Args:
            service: Tag operations backend
            seed_user_id: Placeholder member used when creating a tag
            tag_description: Description for newly created tags
            create_settle_seconds: Delay before checking a new tag is visible
            delete_settle_seconds: Delay before checking a deleted tag is gone
            settle_timeout_seconds: Upper bound for each visibility poll
            dry_run: If True, report changes without making them
            backup_dir: Where membership backups are written
            backup: If True, back up a tag's membership before changing it
        """
        self.service = service
        self.seed_user_id = seed_user_id
        self.tag_description = tag_description
        self.create_settle_seconds = create_settle_seconds
        self.delete_settle_seconds = delete_settle_seconds
        self.settle_timeout_seconds = settle_timeout_seconds
        self.dry_run = dry_run
        self.backup_dir = backup_dir
        self.backup = backup

    @classmethod
    def from_config(
        cls,
        service: TagService,
        config: TagSyncConfig,
        dry_run: bool = False,
        backup: bool = False,
        backup_dir: Path | str | None = None,
    ) -> "TagReconciler":
        """Build a reconciler from validated tag sync settings."""
        return cls(
            service=service,
            seed_user_id=config.seed_user_id,
            tag_description=config.tag_description,
            create_settle_seconds=config.create_settle_seconds,
            delete_settle_seconds=config.delete_settle_seconds,
            settle_timeout_seconds=config.settle_timeout_seconds,
            dry_run=dry_run,
            backup=backup,
            backup_dir=backup_dir,
        )

    async def reconcile(
        self,
        team_id: str,
        tag_name: str,
        reference_ids: Iterable[str],
        team_name: str = "",
    ) -> TagSyncResult:
        """Bring the tag's membership in line with the reference set.

        Failures that make the team unsyncable (team missing, tag cannot be
        created or deleted, membership still unreadable after one rebuild)
        are recorded on ``result.error``. Individual add/remove failures are recorded
        per member and do not stop the rest.

        Args:
            team_id: Team that owns the tag
            tag_name: Exact display name of the tag
            reference_ids: User ids that should be tagged
            team_name: Team display name, for reporting

        Returns:
            TagSyncResult describing what happened
        """
        result = TagSyncResult(team_id=team_id, team_name=team_name or team_id, tag_name=tag_name)
        try:
            await self._reconcile(result, set(reference_ids))
        except TeamNotFoundError as e:
            result.error = f"Team not found: {e}"
            logger.error(f"Skipping team {result.team_name}: {e}")
        except TagCreateError as e:
            result.error = f"Tag creation failed: {e}"
            logger.error(f"Skipping team {result.team_name}: {e}")
        except UnresolvableMemberError as e:
            result.error = f"Tag membership unreadable after rebuild: {e}"
            logger.error(f"Skipping team {result.team_name}: {e}")
        except TagDeleteError as e:
            result.error = f"Tag rebuild failed: {e}"
            logger.error(f"Skipping team {result.team_name}: {e}")
        return result

    async def _reconcile(self, result: TagSyncResult, reference: set[str]) -> None:
        team_id, tag_name = result.team_id, result.tag_name

        tag = await self.service.get_tag(team_id, tag_name)
        if tag is None:
            if self.dry_run:
                logger.info(f"Would create tag {tag_name} in {result.team_name}")
                result.created = True
            else:
                tag = await self._create_tag(team_id, tag_name)
                result.created = True

        if tag is None:
            # Dry run: a new tag would hold only the seed member
            members = [TagMember(entry_id="", user_id=self.seed_user_id)]
        else:
            result.tag_id = tag.id
            try:
                members = await self._read_members(tag)
            except UnresolvableMemberError as e:
                logger.warning(
                    f"Tag {tag_name} in {result.team_name} has an unresolvable member: {e}"
                )
                result.recovered = True
                if self.dry_run:
                    logger.info(f"Would delete and recreate tag {tag_name} in {result.team_name}")
                    members = [TagMember(entry_id="", user_id=self.seed_user_id)]
                else:
                    if self.backup:
                        # Only the tag itself is known; its members could not be read
                        self._backup(tag, [], result.team_name)
                    tag = await self._recreate_tag(tag)
                    result.tag_id = tag.id
                    # A second fault propagates and is fatal for this team
                    members = await self._read_members(tag)

        by_user = {m.user_id: m for m in members}
        delta = compute_delta(reference, by_user.keys())
        logger.info(
            f"{result.team_name}: {len(delta.to_add)} to add, {len(delta.to_remove)} to remove, "
            f"{len(delta.unchanged)} unchanged"
        )

        if tag is not None and delta.has_changes and self.backup and not self.dry_run:
            self._backup(tag, members, result.team_name)

        # Adds go first so the tag never drops to zero members mid-sync
        for user_id in delta.to_add:
            if self.dry_run:
                logger.info(f"Would add {user_id} to {tag_name} in {result.team_name}")
                result.members_added.append(user_id)
                continue
            error = await self._apply(self.service.add_tag_member, team_id, tag.id, user_id)
            if error is None:
                result.members_added.append(user_id)
            else:
                result.add_failures.append(f"Failed to add {user_id}: {error}")

        for user_id in delta.to_remove:
            if self.dry_run:
                logger.info(f"Would remove {user_id} from {tag_name} in {result.team_name}")
                result.members_removed.append(user_id)
                continue
            entry_id = by_user[user_id].entry_id
            error = await self._apply(self.service.remove_tag_member, team_id, tag.id, entry_id)
            if error is None:
                result.members_removed.append(user_id)
            else:
                result.remove_failures.append(f"Failed to remove {user_id}: {error}")

    async def _read_members(self, tag: TeamTag) -> list[TagMember]:
        """Read a tag's members, treating a silently emptied tag as unresolvable."""
        members = await self.service.list_tag_members(tag.team_id, tag.id)
        # Teams never leaves a tag empty, so a reported count with no readable
        # entries means every entry points at a deleted account
        if not members and tag.member_count:
            raise UnresolvableMemberError(
                f"Tag {tag.id} in team {tag.team_id} reports {tag.member_count} members "
                "but none could be read"
            )
        return members

    def _backup(self, tag: TeamTag, members: list[TagMember], team_name: str) -> None:
        """Back up tag membership; a failed backup does not stop the sync."""
        try:
            backup_tag_members(tag, members, team_name=team_name, backup_dir=self.backup_dir)
        except Exception as e:
            logger.warning(
                f"Backup of tag {tag.display_name} in {team_name} failed, continuing anyway: {e}"
            )

    async def _apply(self, operation, team_id: str, tag_id: str, target: str) -> str | None:
        """Run one membership change, returning an error message on failure."""
        try:
            if await operation(team_id, tag_id, target):
                return None
            return "rejected by service"
        except Exception as e:
            logger.error(f"Membership change for {target} in tag {tag_id} failed: {e}")
            return str(e)

    async def _create_tag(self, team_id: str, tag_name: str) -> TeamTag:
        """Create the tag and wait until Graph reports it."""
        tag = await self.service.create_tag(
            team_id, tag_name, self.tag_description, self.seed_user_id
        )

        async def _visible() -> bool:
            return await self.service.get_tag(team_id, tag_name) is not None

        visible = await wait_until(
            _visible,
            description=f"tag {tag_name} in team {team_id} to appear",
            initial_delay=self.create_settle_seconds,
            timeout=self.settle_timeout_seconds,
        )
        if not visible:
            raise TagCreateError(f"Tag {tag_name} in team {team_id} never became visible")
        return tag

    async def _recreate_tag(self, tag: TeamTag) -> TeamTag:
        """Delete a tag with an unresolvable member and create it again."""
        logger.info(f"Deleting tag {tag.display_name} ({tag.id}) in team {tag.team_id}")
        if not await self.service.delete_tag(tag.team_id, tag.id):
            raise TagDeleteError(f"Could not delete tag {tag.id} to rebuild it")

        async def _gone() -> bool:
            return await self.service.get_tag(tag.team_id, tag.display_name) is None

        gone = await wait_until(
            _gone,
            description=f"tag {tag.display_name} in team {tag.team_id} to be deleted",
            initial_delay=self.delete_settle_seconds,
            timeout=self.settle_timeout_seconds,
        )
        if not gone:
            raise TagDeleteError(f"Deleted tag {tag.id} is still visible")

        return await self._create_tag(tag.team_id, tag.display_name)


class TagSyncManager:
    """Sync the configured tag across every matching team."""

    def __init__(
        self,
        config: TagSyncConfig,
        dry_run: bool = False,
        backup: bool = True,
        backup_dir: Path | str | None = None,
    ) -> None:
        """Initialize the sync manager.

        Raises:
            ValueError: If the configuration is invalid
        """
        config.validate()
        self.config = config
        self.dry_run = dry_run
        self.backup = backup
        self.backup_dir = backup_dir
        self._tags: TeamsTagManager | None = None
        self._groups: EntraGroupManager | None = None

    @property
    def tags(self) -> TeamsTagManager:
        """Lazy-load Teams tag manager."""
        if self._tags is None:
            self._tags = TeamsTagManager()
        return self._tags

    @property
    def groups(self) -> EntraGroupManager:
        """Lazy-load Entra group manager."""
        if self._groups is None:
            self._groups = EntraGroupManager()
        return self._groups

    async def _resolve_teams(self, team_ids: list[str] | None) -> list[Team | TagSyncResult]:
        """Get the teams to process; unknown explicit ids become failed results."""
        if not team_ids:
            return list(await self.tags.list_teams(self.config.team_description_pattern))

        resolved: list[Team | TagSyncResult] = []
        for team_id in team_ids:
            try:
                resolved.append(await self.tags.get_team(team_id))
            except TeamNotFoundError as e:
                logger.error(f"Skipping team {team_id}: {e}")
                resolved.append(
                    TagSyncResult(
                        team_id=team_id,
                        team_name=team_id,
                        tag_name=self.config.tag_name,
                        error=f"Team not found: {e}",
                    )
                )
        return resolved

    async def sync(self, team_ids: list[str] | None = None) -> FullTagSyncResult:
        """Sync the tag in every matching team.

        Args:
            team_ids: Restrict the run to these teams instead of matching
                on description

        Returns:
            FullTagSyncResult with one entry per team

        Raises:
            GroupNotFoundError: If the control group does not exist
        """
        reference = await self.groups.get_group_member_ids(self.config.control_group_id)
        if not reference:
            logger.warning(
                f"Control group {self.config.control_group_id} has no user members; "
                "every tag member will be removed"
            )

        full_result = FullTagSyncResult(
            tag_name=self.config.tag_name, reference_count=len(reference)
        )
        reconciler = TagReconciler.from_config(
            self.tags,
            self.config,
            dry_run=self.dry_run,
            backup=self.backup,
            backup_dir=self.backup_dir,
        )

        for team in await self._resolve_teams(team_ids):
            if isinstance(team, TagSyncResult):
                full_result.teams.append(team)
                continue

            logger.info(f"Processing {team.display_name} ({team.id})")
            try:
                result = await reconciler.reconcile(
                    team.id, self.config.tag_name, reference, team_name=team.display_name
                )
            except Exception as e:
                logger.error(f"Failed to sync tag in {team.display_name}: {e}")
                result = TagSyncResult(
                    team_id=team.id,
                    team_name=team.display_name,
                    tag_name=self.config.tag_name,
                    error=str(e),
                )
            full_result.teams.append(result)

        return full_result
