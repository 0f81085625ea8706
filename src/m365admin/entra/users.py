"""Entra ID user management operations."""

import logging
from dataclasses import dataclass

from kiota_abstractions.api_error import APIError
from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph import GraphServiceClient
from msgraph.generated.models.user import User
from msgraph.generated.users.item.user_item_request_builder import UserItemRequestBuilder

from m365admin.core.msgraph_client import get_graph_client

logger = logging.getLogger(__name__)


class UserNotFoundError(LookupError):
    """The user does not exist in the directory."""


@dataclass
class EntraUser:
    """Represents an Entra ID user."""

    id: str
    display_name: str | None
    upn: str | None
    email: str | None = None
    account_enabled: bool = True
    job_title: str | None = None
    department: str | None = None

    @property
    def is_active(self) -> bool:
        """Check if user account is enabled."""
        return self.account_enabled


class EntraUserManager:
    """Manage users in Entra ID."""

    def __init__(self) -> None:
        """Initialize the user manager."""
        self.client: GraphServiceClient = get_graph_client()

    def _to_entra_user(self, user: User) -> EntraUser:
        """Convert MS Graph User to EntraUser."""
        return EntraUser(
            id=user.id or "",
            display_name=user.display_name,
            upn=user.user_principal_name,
            email=user.mail,
            account_enabled=user.account_enabled or False,
            job_title=user.job_title,
            department=user.department,
        )

    async def get_user(self, user_id: str) -> EntraUser:
        """Fetch a single user by object id or UPN.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        query_params = UserItemRequestBuilder.UserItemRequestBuilderGetQueryParameters(
            select=[
                "id",
                "displayName",
                "userPrincipalName",
                "mail",
                "accountEnabled",
                "jobTitle",
                "department",
            ],
        )
        config = RequestConfiguration(query_parameters=query_params)

        try:
            user = await self.client.users.by_user_id(user_id).get(request_configuration=config)
        except APIError as e:
            if getattr(e, "response_status_code", None) == 404:
                raise UserNotFoundError(f"User not found: {user_id}") from e
            raise

        if not user:
            raise UserNotFoundError(f"User not found: {user_id}")
        return self._to_entra_user(user)

    async def disable_user(self, user_id: str) -> bool:
        """Block sign-in for a user account.

        Args:
            user_id: Entra user ID or UPN

        Returns:
            True if successful
        """
        user = User(account_enabled=False)

        try:
            await self.client.users.by_user_id(user_id).patch(user)
            logger.info(f"Disabled user: {user_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to disable user {user_id}: {e}")
            return False

    async def revoke_sessions(self, user_id: str) -> bool:
        """Invalidate refresh tokens and session cookies for a user.

        Args:
            user_id: Entra user ID or UPN

        Returns:
            True if successful
        """
        try:
            await self.client.users.by_user_id(user_id).revoke_sign_in_sessions.post()
            logger.info(f"Revoked sign-in sessions for {user_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to revoke sessions for {user_id}: {e}")
            return False
