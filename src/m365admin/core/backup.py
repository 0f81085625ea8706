"""Backup utilities for tag memberships and offboarded users."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from m365admin.entra.auth_methods import AuthMethod
    from m365admin.entra.devices import ManagedDevice
    from m365admin.entra.groups import EntraGroup
    from m365admin.entra.users import EntraUser
    from m365admin.teams.tags import TagMember, TeamTag

logger = logging.getLogger(__name__)

# Default backup directory relative to project root
DEFAULT_BACKUP_DIR = Path(__file__).parent.parent.parent.parent / "backups"


def get_backup_dir(base_dir: Path | str | None = None) -> Path:
    """Get or create the backup directory.

    Args:
        base_dir: Base directory for backups. If None, uses default.

    Returns:
        Path to backup directory
    """
    backup_path = DEFAULT_BACKUP_DIR if base_dir is None else Path(base_dir)
    backup_path.mkdir(parents=True, exist_ok=True)
    return backup_path


def _safe_name(value: str) -> str:
    """Reduce an id or UPN to something usable in a filename."""
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", value).strip("_") or "unknown"


def _write_backup(filepath: Path, data: dict) -> Path:
    with filepath.open("w") as f:
        json.dump(data, f, indent=2, default=str)
    return filepath


def backup_tag_members(
    tag: TeamTag,
    members: list[TagMember],
    team_name: str = "",
    backup_dir: Path | str | None = None,
    prefix: str = "teams",
) -> Path:
    """Backup a tag's membership before it is changed.

    Args:
        tag: The tag being synced
        members: Current membership entries
        team_name: Display name of the owning team
        backup_dir: Directory to save backup. If None, uses default.
        prefix: Prefix for the backup filename

    Returns:
        Path to the created backup file
    """
    backup_dir = get_backup_dir(backup_dir)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"{prefix}_tag_{_safe_name(tag.team_id)}_{_safe_name(tag.id)}_{timestamp}.json"
    filepath = backup_dir / filename

    data = {
        "backup_type": "team_tag",
        "timestamp": datetime.now().isoformat(),
        "team_id": tag.team_id,
        "team_name": team_name,
        "tag": asdict(tag),
        "count": len(members),
        "members": [asdict(m) for m in members],
    }
    _write_backup(filepath, data)

    logger.info(f"Backed up {len(members)} members of tag {tag.display_name} to {filepath}")
    return filepath


def backup_user_state(
    user: EntraUser,
    groups: list[EntraGroup] | None = None,
    auth_methods: list[AuthMethod] | None = None,
    devices: list[ManagedDevice] | None = None,
    backup_dir: Path | str | None = None,
    prefix: str = "offboard",
) -> Path:
    """Snapshot a user's account state before offboarding.

    Args:
        user: The user being offboarded
        groups: Direct group memberships
        auth_methods: Registered authentication methods
        devices: Managed devices
        backup_dir: Directory to save backup. If None, uses default.
        prefix: Prefix for the backup filename

    Returns:
        Path to the created backup file
    """
    backup_dir = get_backup_dir(backup_dir)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"{prefix}_{_safe_name(user.upn or user.id)}_{timestamp}.json"
    filepath = backup_dir / filename

    data = {
        "backup_type": "offboard_user",
        "timestamp": datetime.now().isoformat(),
        "user": asdict(user),
        "groups": [
            {
                "id": g.id,
                "display_name": g.display_name,
                "group_type": g.group_type.value,
                "dynamic": g.is_dynamic,
            }
            for g in groups or []
        ],
        "auth_methods": [{"kind": m.kind.value, **asdict(m)} for m in auth_methods or []],
        "devices": [asdict(d) for d in devices or []],
    }
    _write_backup(filepath, data)

    logger.info(f"Backed up account state of {user.upn or user.id} to {filepath}")
    return filepath

