"""Entra ID authentication method operations.

Graph returns every registered sign-in method through one endpoint, with
the concrete kind identified by ``@odata.type``, but deletes each kind
through its own endpoint. The raw type string is read once, in
``parse_auth_method``, and turned into one of the typed method classes
below; everything else dispatches on ``AuthMethodKind``.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

from msgraph import GraphServiceClient
from msgraph.generated.models.authentication_method import AuthenticationMethod
from msgraph.generated.users.item.authentication.authentication_request_builder import (
    AuthenticationRequestBuilder,
)

from m365admin.core.msgraph_client import get_graph_client

logger = logging.getLogger(__name__)


class AuthMethodKind(Enum):
    """Kinds of authentication methods a user can register."""

    PASSWORD = "password"
    PHONE = "phone"
    MICROSOFT_AUTHENTICATOR = "microsoft_authenticator"
    FIDO2 = "fido2"
    WINDOWS_HELLO = "windows_hello"
    EMAIL = "email"
    SOFTWARE_OATH = "software_oath"
    TEMPORARY_ACCESS_PASS = "temporary_access_pass"


ODATA_TYPE_KINDS: dict[str, AuthMethodKind] = {
    "#microsoft.graph.passwordAuthenticationMethod": AuthMethodKind.PASSWORD,
    "#microsoft.graph.phoneAuthenticationMethod": AuthMethodKind.PHONE,
    "#microsoft.graph.microsoftAuthenticatorAuthenticationMethod": (
        AuthMethodKind.MICROSOFT_AUTHENTICATOR
    ),
    "#microsoft.graph.fido2AuthenticationMethod": AuthMethodKind.FIDO2,
    "#microsoft.graph.windowsHelloForBusinessAuthenticationMethod": AuthMethodKind.WINDOWS_HELLO,
    "#microsoft.graph.emailAuthenticationMethod": AuthMethodKind.EMAIL,
    "#microsoft.graph.softwareOathAuthenticationMethod": AuthMethodKind.SOFTWARE_OATH,
    "#microsoft.graph.temporaryAccessPassAuthenticationMethod": (
        AuthMethodKind.TEMPORARY_ACCESS_PASS
    ),
}


@dataclass(frozen=True)
class PasswordMethod:
    """The user's password. Graph does not allow deleting it."""

    id: str
    kind: ClassVar[AuthMethodKind] = AuthMethodKind.PASSWORD

    @property
    def summary(self) -> str:
        """Short label for reports."""
        return "password"


@dataclass(frozen=True)
class PhoneMethod:
    """SMS or voice phone number."""

    id: str
    phone_number: str | None = None
    phone_type: str | None = None
    kind: ClassVar[AuthMethodKind] = AuthMethodKind.PHONE

    @property
    def summary(self) -> str:
        """Phone type and number."""
        return f"{self.phone_type or 'phone'} {self.phone_number or ''}".strip()


@dataclass(frozen=True)
class AuthenticatorMethod:
    """Microsoft Authenticator app registration."""

    id: str
    display_name: str | None = None
    device_tag: str | None = None
    phone_app_version: str | None = None
    kind: ClassVar[AuthMethodKind] = AuthMethodKind.MICROSOFT_AUTHENTICATOR

    @property
    def summary(self) -> str:
        """Authenticator app and the device it runs on."""
        return f"Authenticator on {self.display_name or 'unknown device'}"


@dataclass(frozen=True)
class Fido2Method:
    """FIDO2 security key."""

    id: str
    display_name: str | None = None
    model: str | None = None
    kind: ClassVar[AuthMethodKind] = AuthMethodKind.FIDO2

    @property
    def summary(self) -> str:
        """Security key name, falling back to its model."""
        return f"FIDO2 key {self.display_name or self.model or ''}".strip()


@dataclass(frozen=True)
class WindowsHelloMethod:
    """Windows Hello for Business key on a device."""

    id: str
    display_name: str | None = None
    key_strength: str | None = None
    kind: ClassVar[AuthMethodKind] = AuthMethodKind.WINDOWS_HELLO

    @property
    def summary(self) -> str:
        """Windows Hello and the device it is bound to."""
        return f"Windows Hello on {self.display_name or 'unknown device'}"


@dataclass(frozen=True)
class EmailMethod:
    """Email address used for self-service password reset."""

    id: str
    email_address: str | None = None
    kind: ClassVar[AuthMethodKind] = AuthMethodKind.EMAIL

    @property
    def summary(self) -> str:
        """Email address used for sign-in."""
        return f"email {self.email_address or ''}".strip()


@dataclass(frozen=True)
class SoftwareOathMethod:
    """Third-party authenticator app (TOTP)."""

    id: str
    kind: ClassVar[AuthMethodKind] = AuthMethodKind.SOFTWARE_OATH

    @property
    def summary(self) -> str:
        """Short label for reports."""
        return "software OATH token"


@dataclass(frozen=True)
class TemporaryAccessPassMethod:
    """Time-limited passcode."""

    id: str
    lifetime_in_minutes: int | None = None
    is_usable: bool | None = None
    kind: ClassVar[AuthMethodKind] = AuthMethodKind.TEMPORARY_ACCESS_PASS

    @property
    def summary(self) -> str:
        """Temporary access pass with its lifetime."""
        return f"temporary access pass ({self.lifetime_in_minutes or '?'} min)"


AuthMethod = (
    PasswordMethod
    | PhoneMethod
    | AuthenticatorMethod
    | Fido2Method
    | WindowsHelloMethod
    | EmailMethod
    | SoftwareOathMethod
    | TemporaryAccessPassMethod
)


def _enum_value(value) -> str | None:
    return value.value if isinstance(value, Enum) else value


_PARSERS: dict[AuthMethodKind, Callable[[AuthenticationMethod], AuthMethod]] = {
    AuthMethodKind.PASSWORD: lambda m: PasswordMethod(id=m.id),
    AuthMethodKind.PHONE: lambda m: PhoneMethod(
        id=m.id, phone_number=m.phone_number, phone_type=_enum_value(m.phone_type)
    ),
    AuthMethodKind.MICROSOFT_AUTHENTICATOR: lambda m: AuthenticatorMethod(
        id=m.id,
        display_name=m.display_name,
        device_tag=m.device_tag,
        phone_app_version=m.phone_app_version,
    ),
    AuthMethodKind.FIDO2: lambda m: Fido2Method(
        id=m.id, display_name=m.display_name, model=m.model
    ),
    AuthMethodKind.WINDOWS_HELLO: lambda m: WindowsHelloMethod(
        id=m.id, display_name=m.display_name, key_strength=_enum_value(m.key_strength)
    ),
    AuthMethodKind.EMAIL: lambda m: EmailMethod(id=m.id, email_address=m.email_address),
    AuthMethodKind.SOFTWARE_OATH: lambda m: SoftwareOathMethod(id=m.id),
    AuthMethodKind.TEMPORARY_ACCESS_PASS: lambda m: TemporaryAccessPassMethod(
        id=m.id, lifetime_in_minutes=m.lifetime_in_minutes, is_usable=m.is_usable
    ),
}

_Deleter = Callable[[AuthenticationRequestBuilder, str], Awaitable]

# Each deletable kind has its own endpoint; None marks kinds that cannot be deleted
_DELETERS: dict[AuthMethodKind, _Deleter | None] = {
    AuthMethodKind.PASSWORD: None,
    AuthMethodKind.PHONE: lambda auth, method_id: (
        auth.phone_methods.by_phone_authentication_method_id(method_id).delete()
    ),
    AuthMethodKind.MICROSOFT_AUTHENTICATOR: lambda auth, method_id: (
        auth.microsoft_authenticator_methods
        .by_microsoft_authenticator_authentication_method_id(method_id)
        .delete()
    ),
    AuthMethodKind.FIDO2: lambda auth, method_id: (
        auth.fido2_methods.by_fido2_authentication_method_id(method_id).delete()
    ),
    AuthMethodKind.WINDOWS_HELLO: lambda auth, method_id: (
        auth.windows_hello_for_business_methods
        .by_windows_hello_for_business_authentication_method_id(method_id)
        .delete()
    ),
    AuthMethodKind.EMAIL: lambda auth, method_id: (
        auth.email_methods.by_email_authentication_method_id(method_id).delete()
    ),
    AuthMethodKind.SOFTWARE_OATH: lambda auth, method_id: (
        auth.software_oath_methods.by_software_oath_authentication_method_id(method_id).delete()
    ),
    AuthMethodKind.TEMPORARY_ACCESS_PASS: lambda auth, method_id: (
        auth.temporary_access_pass_methods.by_temporary_access_pass_authentication_method_id(
            method_id
        ).delete()
    ),
}


def parse_auth_method(method: AuthenticationMethod) -> AuthMethod | None:
    """Convert a Graph authentication method into its typed form.

    Returns:
        The typed method, or None for kinds this module does not know
    """
    kind = ODATA_TYPE_KINDS.get(method.odata_type or "")
    if kind is None or not method.id:
        logger.warning(f"Skipping unrecognized authentication method type: {method.odata_type}")
        return None
    return _PARSERS[kind](method)


def is_deletable(method: AuthMethod) -> bool:
    """Whether Graph allows this method to be deleted."""
    return _DELETERS[method.kind] is not None


@dataclass
class AuthMethodRemoval:
    """Outcome of removing all of a user's authentication methods."""

    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class AuthMethodManager:
    """Manage a user's registered authentication methods."""

    def __init__(self) -> None:
        """Initialize the authentication method manager."""
        self.client: GraphServiceClient = get_graph_client()

    async def list_methods(self, user_id: str) -> tuple[list[AuthMethod], list[str]]:
        """Get a user's registered authentication methods.

        Args:
            user_id: Entra user ID or UPN

        Returns:
            Tuple of (typed methods, odata types that were not recognized)
        """
        result = await self.client.users.by_user_id(user_id).authentication.methods.get()

        methods: list[AuthMethod] = []
        unknown: list[str] = []
        for raw in (result.value if result else None) or []:
            parsed = parse_auth_method(raw)
            if parsed is None:
                unknown.append(raw.odata_type or "unknown")
            else:
                methods.append(parsed)
        return methods, unknown

    async def delete_method(self, user_id: str, method: AuthMethod) -> bool:
        """Delete one authentication method.

        Returns:
            True if successful
        """
        deleter = _DELETERS[method.kind]
        if deleter is None:
            logger.info(f"Not deleting {method.summary} for {user_id}: not supported by Graph")
            return False

        auth = self.client.users.by_user_id(user_id).authentication
        try:
            await deleter(auth, method.id)
            logger.info(f"Deleted {method.summary} for {user_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete {method.summary} for {user_id}: {e}")
            return False

    async def remove_all(
        self, user_id: str, methods: list[AuthMethod] | None = None
    ) -> AuthMethodRemoval:
        """Delete every deletable authentication method of a user.

        Graph refuses to delete the default method while other methods
        remain, so anything that fails on the first pass is tried once
        more after the rest are gone.

        Args:
            user_id: Entra user ID or UPN
            methods: Methods to remove; fetched when omitted

        Returns:
            AuthMethodRemoval listing removed, skipped and failed methods
        """
        removal = AuthMethodRemoval()
        if methods is None:
            methods, unknown = await self.list_methods(user_id)
            removal.skipped.extend(f"unrecognized method type {t}" for t in unknown)

        pending = []
        for method in methods:
            if not is_deletable(method):
                removal.skipped.append(method.summary)
            elif await self.delete_method(user_id, method):
                removal.removed.append(method.summary)
            else:
                pending.append(method)

        for method in pending:
            if await self.delete_method(user_id, method):
                removal.removed.append(method.summary)
            else:
                removal.failed.append(method.summary)

        return removal
