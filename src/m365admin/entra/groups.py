"""Entra ID group management operations."""

import logging
from dataclasses import dataclass, field
from enum import Enum

from kiota_abstractions.api_error import APIError
from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph import GraphServiceClient
from msgraph.generated.groups.item.members.members_request_builder import (
    MembersRequestBuilder,
)
from msgraph.generated.models.group import Group

from m365admin.core.msgraph_client import get_graph_client

logger = logging.getLogger(__name__)

USER_ODATA_TYPE = "#microsoft.graph.user"
GROUP_ODATA_TYPE = "#microsoft.graph.group"


class GroupNotFoundError(LookupError):
    """The group does not exist or is not visible to the app."""


class GroupType(Enum):
    """Types of Entra ID groups."""

    SECURITY = "security"
    MICROSOFT_365 = "microsoft365"
    DISTRIBUTION = "distribution"
    MAIL_ENABLED_SECURITY = "mail_enabled_security"
    UNKNOWN = "unknown"


@dataclass
class EntraGroup:
    """Represents an Entra ID group."""

    id: str
    display_name: str
    mail_enabled: bool = False
    security_enabled: bool = False
    group_types: list[str] = field(default_factory=list)

    @property
    def group_type(self) -> GroupType:
        """Determine the type of group."""
        # Microsoft 365 groups have "Unified" in groupTypes
        if "Unified" in self.group_types:
            return GroupType.MICROSOFT_365
        if self.mail_enabled and self.security_enabled:
            return GroupType.MAIL_ENABLED_SECURITY
        if self.mail_enabled and not self.security_enabled:
            return GroupType.DISTRIBUTION
        if self.security_enabled and not self.mail_enabled:
            return GroupType.SECURITY
        return GroupType.UNKNOWN

    @property
    def is_dynamic(self) -> bool:
        """Dynamic groups compute membership from a rule and reject manual removal."""
        return "DynamicMembership" in self.group_types

    @property
    def is_graph_managed(self) -> bool:
        """Whether Graph can change this group's membership.

        Distribution lists and mail-enabled security groups are managed
        by Exchange Online.
        """
        return not self.is_dynamic and self.group_type in (
            GroupType.SECURITY,
            GroupType.MICROSOFT_365,
        )


class EntraGroupManager:
    """Manage groups in Entra ID."""

    def __init__(self) -> None:
        """Initialize the group manager."""
        self.client: GraphServiceClient = get_graph_client()

    def _to_entra_group(self, group: Group) -> EntraGroup:
        """Convert MS Graph Group to EntraGroup."""
        return EntraGroup(
            id=group.id or "",
            display_name=group.display_name or "",
            mail_enabled=group.mail_enabled or False,
            security_enabled=group.security_enabled or False,
            group_types=group.group_types or [],
        )

    async def get_group_member_ids(self, group_id: str) -> set[str]:
        """Get the user ids that are direct members of a group.

        Nested groups, devices and service principals are ignored.

        Args:
            group_id: The group ID

        Returns:
            Set of member user IDs

        Raises:
            GroupNotFoundError: If the group does not exist
        """
        query_params = MembersRequestBuilder.MembersRequestBuilderGetQueryParameters(
            select=["id"],
            top=999,
        )
        config = RequestConfiguration(query_parameters=query_params)
        members_builder = self.client.groups.by_group_id(group_id).members

        try:
            result = await members_builder.get(request_configuration=config)
        except APIError as e:
            if getattr(e, "response_status_code", None) == 404:
                raise GroupNotFoundError(f"Group not found: {group_id}") from e
            raise

        member_ids: set[str] = set()
        while result:
            for member in result.value or []:
                if member.id and member.odata_type == USER_ODATA_TYPE:
                    member_ids.add(member.id)
            if not result.odata_next_link:
                break
            result = await members_builder.with_url(result.odata_next_link).get()

        logger.info(f"Group {group_id} has {len(member_ids)} user members")
        return member_ids

    async def get_user_groups(self, user_id: str) -> list[EntraGroup]:
        """Get the groups a user is a direct member of.

        Args:
            user_id: Entra user ID or UPN

        Returns:
            List of EntraGroup objects (directory roles and admin units excluded)
        """
        member_of = self.client.users.by_user_id(user_id).member_of
        result = await member_of.get()

        groups = []
        while result:
            for obj in result.value or []:
                if obj.odata_type == GROUP_ODATA_TYPE and obj.id:
                    groups.append(self._to_entra_group(obj))
            if not result.odata_next_link:
                break
            result = await member_of.with_url(result.odata_next_link).get()

        return groups

    async def remove_user_from_group(self, group_id: str, user_id: str) -> bool:
        """Remove a user from a group.

        Args:
            group_id: The group ID
            user_id: The user ID to remove

        Returns:
            True if successful
        """
        try:
            await (
                self.client.groups.by_group_id(group_id)
                .members.by_directory_object_id(user_id)
                .ref.delete()
            )
            logger.info(f"Removed user {user_id} from group {group_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to remove user {user_id} from group {group_id}: {e}")
            return False
