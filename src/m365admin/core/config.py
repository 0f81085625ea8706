"""Configuration loading utilities."""

import json
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def get_graph_credentials() -> tuple[str, str, str]:
    """Get MS Graph API credentials from environment.

    Returns:
        Tuple of (tenant_id, client_id, client_secret)

    Raises:
        ValueError: If any required credential is not set
    """
    load_dotenv()

    tenant_id = os.getenv("MS_GRAPH_TENANT_ID")
    client_id = os.getenv("MS_GRAPH_CLIENT_ID")
    client_secret = os.getenv("MS_GRAPH_CLIENT_SECRET")

    if not tenant_id or not client_id or not client_secret:
        raise ValueError(
            "MS Graph credentials not set. Required: "
            "MS_GRAPH_TENANT_ID, MS_GRAPH_CLIENT_ID, MS_GRAPH_CLIENT_SECRET"
        )

    return tenant_id, client_id, client_secret


@dataclass
class ExchangeCredentials:
    """Credentials for Exchange Online PowerShell authentication."""

    tenant_id: str
    client_id: str
    organization: str
    certificate_thumbprint: str | None = None
    certificate_path: str | None = None
    certificate_password: str | None = None


def get_exchange_credentials() -> ExchangeCredentials:
    """Get Exchange Online credentials from environment.

    Uses certificate-based authentication for app-only access.
    Either certificate_thumbprint (Windows) or certificate_path + password
    (cross-platform) must be provided.

    Environment variables:
        EXCHANGE_TENANT_ID: Tenant ID (falls back to MS_GRAPH_TENANT_ID)
        EXCHANGE_CLIENT_ID: App client ID (falls back to MS_GRAPH_CLIENT_ID)
        EXCHANGE_ORGANIZATION: Organization domain (e.g. contoso.onmicrosoft.com)
        EXCHANGE_CERTIFICATE_THUMBPRINT: Certificate thumbprint (Windows)
        EXCHANGE_CERTIFICATE_PATH: Path to .pfx certificate file
        EXCHANGE_CERTIFICATE_PASSWORD: Password for .pfx file

    Returns:
        ExchangeCredentials with certificate configuration

    Raises:
        ValueError: If required values are missing
    """
    load_dotenv()

    tenant_id = os.getenv("EXCHANGE_TENANT_ID") or os.getenv("MS_GRAPH_TENANT_ID")
    client_id = os.getenv("EXCHANGE_CLIENT_ID") or os.getenv("MS_GRAPH_CLIENT_ID")

    if not tenant_id or not client_id:
        raise ValueError(
            "Exchange credentials not set. Required: "
            "EXCHANGE_TENANT_ID/MS_GRAPH_TENANT_ID and EXCHANGE_CLIENT_ID/MS_GRAPH_CLIENT_ID"
        )

    organization = os.getenv("EXCHANGE_ORGANIZATION")
    if not organization:
        raise ValueError("Exchange organization not set. Required: EXCHANGE_ORGANIZATION")

    thumbprint = os.getenv("EXCHANGE_CERTIFICATE_THUMBPRINT")
    cert_path = os.getenv("EXCHANGE_CERTIFICATE_PATH")
    cert_password = os.getenv("EXCHANGE_CERTIFICATE_PASSWORD")

    if not thumbprint and not cert_path:
        raise ValueError(
            "Exchange credentials not set. Required: "
            "EXCHANGE_CERTIFICATE_THUMBPRINT (Windows) or "
            "EXCHANGE_CERTIFICATE_PATH + EXCHANGE_CERTIFICATE_PASSWORD (cross-platform)"
        )

    if cert_path and cert_password is None:
        raise ValueError(
            "EXCHANGE_CERTIFICATE_PASSWORD is required when using EXCHANGE_CERTIFICATE_PATH "
            "(can be empty string for Key Vault generated certs)"
        )

    return ExchangeCredentials(
        tenant_id=tenant_id,
        client_id=client_id,
        organization=organization,
        certificate_thumbprint=thumbprint,
        certificate_path=cert_path,
        certificate_password=cert_password,
    )


@dataclass
class TagSyncConfig:
    """Settings for syncing a Teams tag against a security group.

    Loaded from config/tag_sync.json. The control group and seed account
    can be overridden from the environment so the JSON file stays free of
    tenant-specific ids.
    """

    tag_name: str
    control_group_id: str
    seed_user_id: str
    tag_description: str = ""
    team_description_pattern: str = "*"
    create_settle_seconds: float = 0.2
    delete_settle_seconds: float = 5.0
    settle_timeout_seconds: float = 60.0

    def validate(self) -> None:
        """Check the configuration before any API call is made.

        Raises:
            ValueError: Listing every missing or invalid field
        """
        problems = []
        for name in ("tag_name", "control_group_id", "seed_user_id", "team_description_pattern"):
            if not str(getattr(self, name) or "").strip():
                problems.append(f"{name} is required")

        if len(self.tag_name) > 40:
            problems.append("tag_name must be 40 characters or fewer")

        for name in ("create_settle_seconds", "delete_settle_seconds"):
            if getattr(self, name) < 0:
                problems.append(f"{name} must not be negative")

        if self.settle_timeout_seconds <= 0:
            problems.append("settle_timeout_seconds must be positive")
        elif self.settle_timeout_seconds < max(
            self.create_settle_seconds, self.delete_settle_seconds
        ):
            problems.append("settle_timeout_seconds must not be shorter than the settle delays")

        if problems:
            raise ValueError("Invalid tag sync configuration: " + "; ".join(problems))


def get_project_root() -> Path:
    """Get the project root directory."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").exists():
            return parent
    raise RuntimeError("Could not find project root (no pyproject.toml found)")


def load_tag_sync_config(config_path: Path | str | None = None) -> TagSyncConfig:
    """Load tag sync configuration from config file and environment.

    Args:
        config_path: Path to the JSON file. Defaults to config/tag_sync.json
            under the project root.

    Returns:
        TagSyncConfig (not yet validated)
    """
    load_dotenv()

    if config_path is None:
        config_path = get_project_root() / "config" / "tag_sync.json"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open() as f:
        config_data = json.load(f)

    return TagSyncConfig(
        tag_name=config_data.get("tag_name", ""),
        tag_description=config_data.get("tag_description", ""),
        control_group_id=(
            os.getenv("TAG_SYNC_CONTROL_GROUP_ID") or config_data.get("control_group_id", "")
        ),
        seed_user_id=os.getenv("TAG_SYNC_SEED_USER_ID") or config_data.get("seed_user_id", ""),
        team_description_pattern=config_data.get("team_description_pattern", "*"),
        create_settle_seconds=float(config_data.get("create_settle_seconds", 0.2)),
        delete_settle_seconds=float(config_data.get("delete_settle_seconds", 5.0)),
        settle_timeout_seconds=float(config_data.get("settle_timeout_seconds", 60.0)),
    )
