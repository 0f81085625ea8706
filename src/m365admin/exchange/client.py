"""Exchange Online PowerShell client.

Executes Exchange Online PowerShell cmdlets via subprocess for the mailbox
settings Graph cannot change for another user (inbox rules).

Prerequisites:
1. Install Exchange Online Management module:
   Install-Module -Name ExchangeOnlineManagement

2. For app-only (unattended) authentication, you need:
   - Azure AD App Registration with Exchange.ManageAsApp permission
   - A certificate (self-signed or CA-signed) uploaded to the app
   - The certificate installed locally (or accessible as .pfx file)
   - App assigned "Exchange Recipient Administrator" role

References:
- https://learn.microsoft.com/en-us/powershell/exchange/app-only-auth-powershell-v2
"""

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from m365admin.core.config import get_exchange_credentials

logger = logging.getLogger(__name__)

POWERSHELL_TIMEOUT_SECONDS = 120


def _quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string."""
    return "'" + value.replace("'", "''") + "'"


@dataclass
class InboxRule:
    """An Outlook inbox rule on a mailbox."""

    identity: str
    name: str
    enabled: bool


class ExchangeOnlineClient:
    """Client for Exchange Online PowerShell operations.

    Executes Exchange cmdlets via subprocess using the official
    ExchangeOnlineManagement PowerShell module.
    """

    def __init__(
        self,
        certificate_thumbprint: str | None = None,
        certificate_path: Path | str | None = None,
        certificate_password: str | None = None,
        organization: str | None = None,
    ) -> None:
        """Initialize the Exchange Online client.

        Args:
            certificate_thumbprint: Thumbprint of installed certificate (Windows)
            certificate_path: Path to .pfx certificate file (cross-platform)
            certificate_password: Password for the .pfx file
            organization: The organization domain (overrides env config)
        """
        creds = get_exchange_credentials()
        self.tenant_id = creds.tenant_id
        self.client_id = creds.client_id
        self.organization = organization or creds.organization
        self.certificate_thumbprint = certificate_thumbprint or creds.certificate_thumbprint
        self.certificate_path = certificate_path or creds.certificate_path
        self.certificate_password = certificate_password or creds.certificate_password

    def _build_connect_command(self) -> str:
        """Build the Connect-ExchangeOnline command."""
        # *>$null keeps the banner out of the JSON output
        if self.certificate_path:
            if self.certificate_password:
                secure_str = (
                    f"-CertificatePassword (ConvertTo-SecureString "
                    f"-String {_quote(self.certificate_password)} -AsPlainText -Force) "
                )
            else:
                secure_str = ""
            return (
                f"Connect-ExchangeOnline "
                f"-AppId {_quote(self.client_id)} "
                f"-CertificateFilePath {_quote(str(self.certificate_path))} "
                f"{secure_str}"
                f"-Organization {_quote(self.organization)} *>$null"
            )
        elif self.certificate_thumbprint:
            return (
                f"Connect-ExchangeOnline "
                f"-AppId {_quote(self.client_id)} "
                f"-CertificateThumbprint {_quote(self.certificate_thumbprint)} "
                f"-Organization {_quote(self.organization)} *>$null"
            )
        else:
            raise ValueError("Either certificate_thumbprint or certificate_path must be provided")

    def _run_powershell(
        self, commands: list[str], parse_json: bool = True
    ) -> dict | list | str | None:
        """Run PowerShell commands and return the result.

        Args:
            commands: List of PowerShell commands to execute
            parse_json: If True, parse output as JSON

        Returns:
            Parsed JSON, raw string output, or None on failure
        """
        full_script = [
            "Import-Module ExchangeOnlineManagement -ErrorAction Stop",
            self._build_connect_command(),
            *commands,
            "Disconnect-ExchangeOnline -Confirm:$false *>$null",
        ]
        script = "; ".join(full_script)

        try:
            result = subprocess.run(  # noqa: S603
                ["pwsh", "-NoProfile", "-NonInteractive", "-Command", script],  # noqa: S607
                capture_output=True,
                text=True,
                timeout=POWERSHELL_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            logger.error("PowerShell command timed out")
            return None
        except FileNotFoundError:
            logger.error("PowerShell (pwsh) not found. Install PowerShell 7+.")
            return None

        if result.returncode != 0:
            logger.error(f"PowerShell error: {result.stderr}")
            return None

        output = result.stdout.strip()
        if not parse_json:
            return output
        if not output:
            return []

        try:
            return json.loads(output)
        except json.JSONDecodeError:
            # Banner text may precede JSON
            starts = [i for i in (output.find("["), output.find("{")) if i != -1]
            if starts:
                try:
                    return json.loads(output[min(starts) :])
                except json.JSONDecodeError:
                    pass
            logger.warning(f"Failed to parse JSON output: {output[:200]}")
            return None

    async def get_inbox_rules(self, mailbox: str) -> list[InboxRule] | None:
        """Get the inbox rules of a mailbox.

        Args:
            mailbox: Mailbox identity (UPN or email)

        Returns:
            List of InboxRule objects, or None if the lookup failed
        """
        commands = [
            f"Get-InboxRule -Mailbox {_quote(mailbox)} "
            "| Select-Object @{ Name = 'Identity'; Expression = { \"$($_.Identity)\" } }, "
            "Name, Enabled | ConvertTo-Json -AsArray",
        ]

        result = await asyncio.to_thread(self._run_powershell, commands)
        if result is None:
            logger.error(f"Failed to get inbox rules for {mailbox}")
            return None

        # A single rule may come back as an object rather than an array
        rows = [result] if isinstance(result, dict) else result
        return [
            InboxRule(
                identity=str(row.get("Identity", "")),
                name=str(row.get("Name", "")),
                enabled=bool(row.get("Enabled", False)),
            )
            for row in rows
            if isinstance(row, dict)
        ]

    async def disable_inbox_rules(
        self, mailbox: str, rules: list[InboxRule]
    ) -> dict[str, str | None]:
        """Disable inbox rules in a single PowerShell session.

        Each rule is disabled independently; one failure does not stop the
        rest.

        Args:
            mailbox: Mailbox identity (UPN or email)
            rules: Rules to disable

        Returns:
            Dict mapping rule name to None on success or an error message
        """
        if not rules:
            return {}

        identities = ", ".join(_quote(rule.identity) for rule in rules)
        commands = [
            "$results = @()",
            (
                f"foreach ($id in @({identities})) {{ "
                f"try {{ Disable-InboxRule -Identity $id -Mailbox {_quote(mailbox)} "
                "-Confirm:$false -ErrorAction Stop; "
                "$results += @{ Identity = $id; Error = $null } } "
                "catch { $results += @{ Identity = $id; Error = $_.Exception.Message } } }"
            ),
            "$results | ConvertTo-Json -AsArray",
        ]

        result = await asyncio.to_thread(self._run_powershell, commands)
        if result is None:
            logger.error(f"Failed to disable inbox rules on {mailbox}")
            return {rule.name: "PowerShell session failed" for rule in rules}

        rows = [result] if isinstance(result, dict) else result
        errors_by_identity = {
            str(row.get("Identity")): row.get("Error") for row in rows if isinstance(row, dict)
        }

        outcome: dict[str, str | None] = {}
        for rule in rules:
            if rule.identity not in errors_by_identity:
                outcome[rule.name] = "no result returned"
            else:
                outcome[rule.name] = errors_by_identity[rule.identity]

            if outcome[rule.name] is None:
                logger.info(f"Disabled inbox rule '{rule.name}' on {mailbox}")
            else:
                logger.error(
                    f"Failed to disable inbox rule '{rule.name}' on {mailbox}: {outcome[rule.name]}"
                )
        return outcome

    async def remove_distribution_group_member(self, identity: str, member: str) -> bool:
        """Remove a member from a distribution group or mail-enabled security group.

        Graph cannot change membership of these groups, so offboarding
        falls back to Exchange for them.

        Args:
            identity: Group id, name, alias, or email address
            member: Member UPN or email address to remove

        Returns:
            True if successful
        """
        commands = [
            f"Remove-DistributionGroupMember -Identity {_quote(identity)} "
            f"-Member {_quote(member)} -BypassSecurityGroupManagerCheck "
            "-Confirm:$false -ErrorAction Stop",
            "Write-Output 'SUCCESS'",
        ]

        result = await asyncio.to_thread(self._run_powershell, commands, parse_json=False)
        if result and "SUCCESS" in str(result):
            logger.info(f"Removed {member} from {identity}")
            return True

        logger.error(f"Failed to remove {member} from {identity}")
        return False
