"""User offboarding workflow.

Runs the account lockdown steps for a departing user against Entra ID
and Exchange Online. Steps are independent: a failed step is recorded and
the remaining steps still run, so a partial offboarding can be finished by
hand from the report.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from m365admin.core.backup import backup_user_state
from m365admin.entra.auth_methods import AuthMethodManager, is_deletable
from m365admin.entra.devices import DeviceManager
from m365admin.entra.groups import EntraGroup, EntraGroupManager
from m365admin.entra.users import EntraUser, EntraUserManager, UserNotFoundError
from m365admin.exchange.client import ExchangeOnlineClient

logger = logging.getLogger(__name__)


class OffboardStep(Enum):
    """Offboarding steps, in the order they run."""

    DISABLE_ACCOUNT = "disable-account"
    REVOKE_SESSIONS = "revoke-sessions"
    REMOVE_AUTH_METHODS = "remove-auth-methods"
    REMOVE_GROUPS = "remove-groups"
    WIPE_DEVICES = "wipe-devices"
    DISABLE_INBOX_RULES = "disable-inbox-rules"


# Wiping is destructive and has to be asked for explicitly
DEFAULT_STEPS = frozenset(OffboardStep) - {OffboardStep.WIPE_DEVICES}


@dataclass
class StepResult:
    """Outcome of a single offboarding step."""

    step: OffboardStep
    done: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Check if the step finished without errors."""
        return not self.errors


@dataclass
class OffboardResult:
    """Result of offboarding one user."""

    user_principal_name: str
    user_id: str | None = None
    display_name: str | None = None
    steps: list[StepResult] = field(default_factory=list)
    backup_path: str | None = None
    error: str | None = None

    @property
    def total_errors(self) -> int:
        """Count of errors across all steps (a fatal error counts once)."""
        return (1 if self.error else 0) + sum(len(s.errors) for s in self.steps)


class OffboardManager:
    """Offboard users from Entra ID and Exchange Online."""

    def __init__(
        self,
        dry_run: bool = False,
        backup: bool = True,
        backup_dir: Path | str | None = None,
        include_personal_devices: bool = False,
    ) -> None:
        """Initialize the offboarding manager.

        Args:
            dry_run: If True, report what would be done without changes
            backup: If True, snapshot the account state before changes
            backup_dir: Where backups are written
            include_personal_devices: Also wipe personally owned devices
        """
        self.dry_run = dry_run
        self.backup = backup
        self.backup_dir = backup_dir
        self.include_personal_devices = include_personal_devices
        self._users: EntraUserManager | None = None
        self._groups: EntraGroupManager | None = None
        self._auth_methods: AuthMethodManager | None = None
        self._devices: DeviceManager | None = None
        self._exchange: ExchangeOnlineClient | None = None

    @property
    def users(self) -> EntraUserManager:
        """Lazy-load Entra user manager."""
        if self._users is None:
            self._users = EntraUserManager()
        return self._users

    @property
    def groups(self) -> EntraGroupManager:
        """Lazy-load Entra group manager."""
        if self._groups is None:
            self._groups = EntraGroupManager()
        return self._groups

    @property
    def auth_methods(self) -> AuthMethodManager:
        """Lazy-load authentication method manager."""
        if self._auth_methods is None:
            self._auth_methods = AuthMethodManager()
        return self._auth_methods

    @property
    def devices(self) -> DeviceManager:
        """Lazy-load device manager."""
        if self._devices is None:
            self._devices = DeviceManager()
        return self._devices

    @property
    def exchange(self) -> ExchangeOnlineClient:
        """Lazy-load Exchange client (only needed for mailbox and mail groups)."""
        if self._exchange is None:
            self._exchange = ExchangeOnlineClient()
        return self._exchange

    async def offboard(
        self,
        user_principal_name: str,
        steps: frozenset[OffboardStep] | set[OffboardStep] = DEFAULT_STEPS,
    ) -> OffboardResult:
        """Run the selected offboarding steps for a user.

        Args:
            user_principal_name: UPN (or object id) of the departing user
            steps: Steps to run

        Returns:
            OffboardResult with one StepResult per step run
        """
        result = OffboardResult(user_principal_name=user_principal_name)

        try:
            user = await self.users.get_user(user_principal_name)
        except UserNotFoundError as e:
            result.error = str(e)
            logger.error(f"Cannot offboard {user_principal_name}: {e}")
            return result

        result.user_id = user.id
        result.display_name = user.display_name
        logger.info(f"Offboarding {user.display_name} ({user.upn}, {user.id})")

        if self.backup and not self.dry_run:
            result.backup_path = await self._backup(user)

        handlers = {
            OffboardStep.DISABLE_ACCOUNT: self._disable_account,
            OffboardStep.REVOKE_SESSIONS: self._revoke_sessions,
            OffboardStep.REMOVE_AUTH_METHODS: self._remove_auth_methods,
            OffboardStep.REMOVE_GROUPS: self._remove_groups,
            OffboardStep.WIPE_DEVICES: self._wipe_devices,
            OffboardStep.DISABLE_INBOX_RULES: self._disable_inbox_rules,
        }

        for step in OffboardStep:
            if step not in steps:
                continue
            step_result = StepResult(step=step)
            logger.info(f"Step: {step.value}")
            try:
                await handlers[step](user, step_result)
            except Exception as e:
                logger.error(f"Step {step.value} failed for {user.upn}: {e}")
                step_result.errors.append(str(e))
            result.steps.append(step_result)

        return result

    async def _backup(self, user: EntraUser) -> str | None:
        """Snapshot the user's groups, methods and devices."""
        try:
            groups = await self.groups.get_user_groups(user.id)
            methods, _ = await self.auth_methods.list_methods(user.id)
            devices = await self.devices.get_user_devices(user.id)
            path = backup_user_state(
                user,
                groups=groups,
                auth_methods=methods,
                devices=devices,
                backup_dir=self.backup_dir,
            )
            return str(path)
        except Exception as e:
            logger.warning(f"Backup of {user.upn} failed, continuing anyway: {e}")
            return None

    async def _disable_account(self, user: EntraUser, step: StepResult) -> None:
        if not user.account_enabled:
            step.skipped.append("account already disabled")
        elif self.dry_run:
            step.done.append("would block sign-in")
        elif await self.users.disable_user(user.id):
            step.done.append("sign-in blocked")
        else:
            step.errors.append("failed to block sign-in")

    async def _revoke_sessions(self, user: EntraUser, step: StepResult) -> None:
        if self.dry_run:
            step.done.append("would revoke sign-in sessions")
        elif await self.users.revoke_sessions(user.id):
            step.done.append("sign-in sessions revoked")
        else:
            step.errors.append("failed to revoke sign-in sessions")

    async def _remove_auth_methods(self, user: EntraUser, step: StepResult) -> None:
        methods, unknown = await self.auth_methods.list_methods(user.id)
        step.skipped.extend(f"unrecognized method type {t}" for t in unknown)

        if self.dry_run:
            for method in methods:
                if is_deletable(method):
                    step.done.append(f"would remove {method.summary}")
                else:
                    step.skipped.append(method.summary)
            return

        removal = await self.auth_methods.remove_all(user.id, methods)
        step.done.extend(f"removed {m}" for m in removal.removed)
        step.skipped.extend(removal.skipped)
        step.errors.extend(f"failed to remove {m}" for m in removal.failed)

    async def _remove_from_group(self, user: EntraUser, group: EntraGroup) -> bool:
        if group.is_graph_managed:
            return await self.groups.remove_user_from_group(group.id, user.id)
        return await self.exchange.remove_distribution_group_member(group.id, user.upn or user.id)

    async def _remove_groups(self, user: EntraUser, step: StepResult) -> None:
        for group in await self.groups.get_user_groups(user.id):
            if group.is_dynamic:
                step.skipped.append(f"{group.display_name} (dynamic membership)")
            elif self.dry_run:
                step.done.append(f"would remove from {group.display_name}")
            elif await self._remove_from_group(user, group):
                step.done.append(f"removed from {group.display_name}")
            else:
                step.errors.append(f"failed to remove from {group.display_name}")

    async def _wipe_devices(self, user: EntraUser, step: StepResult) -> None:
        for device in await self.devices.get_user_devices(user.id):
            label = f"{device.device_name} ({device.operating_system or 'unknown OS'})"
            if device.is_personal and not self.include_personal_devices:
                step.skipped.append(f"{label} is personally owned")
            elif self.dry_run:
                step.done.append(f"would wipe {label}")
            elif await self.devices.wipe_device(device):
                step.done.append(f"wipe issued for {label}")
            else:
                step.errors.append(f"failed to wipe {label}")

    async def _disable_inbox_rules(self, user: EntraUser, step: StepResult) -> None:
        mailbox = user.upn or user.id
        rules = await self.exchange.get_inbox_rules(mailbox)
        if rules is None:
            step.errors.append(f"could not read inbox rules for {mailbox}")
            return

        enabled = [r for r in rules if r.enabled]
        step.skipped.extend(f"rule '{r.name}' already disabled" for r in rules if not r.enabled)

        if self.dry_run:
            step.done.extend(f"would disable rule '{r.name}'" for r in enabled)
            return

        for name, error in (await self.exchange.disable_inbox_rules(mailbox, enabled)).items():
            if error is None:
                step.done.append(f"disabled rule '{name}'")
            else:
                step.errors.append(f"failed to disable rule '{name}': {error}")
