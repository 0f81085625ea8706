"""CLI script to sync a Teams tag from an Entra ID security group.

Every team whose description matches the configured pattern gets a tag
whose members mirror the control group. Settings come from
config/tag_sync.json; credentials from the environment (.env).
"""

import argparse
import asyncio
import logging
import sys

from m365admin.core.config import load_tag_sync_config
from m365admin.entra.groups import GroupNotFoundError
from m365admin.teams.tag_sync import FullTagSyncResult, TagSyncManager

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

# Silence verbose HTTP request logging
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("azure.identity").setLevel(logging.WARNING)
logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)


def print_result(result: FullTagSyncResult, dry_run: bool = False) -> None:
    """Print sync results in a readable format."""
    logger.info("")
    logger.info("=" * 60)
    logger.info(f"Tag Sync Results: {result.tag_name}")
    logger.info("=" * 60)

    for team_result in result.teams:
        logger.info(f"\n{team_result.team_name} ({team_result.team_id}):")

        if team_result.error:
            logger.error(f"  FAILED: {team_result.error}")
            continue

        if team_result.created:
            action = "Would create" if dry_run else "Created"
            logger.info(f"  Tag: {action}")
        elif team_result.recovered:
            action = "Would rebuild" if dry_run else "Rebuilt"
            logger.info(f"  Tag: {action} (unresolvable member)")
        else:
            logger.info("  Tag: Exists")

        if team_result.members_added:
            action = "Would add" if dry_run else "Added"
            logger.info(f"  {action}: {', '.join(team_result.members_added)}")

        if team_result.members_removed:
            action = "Would remove" if dry_run else "Removed"
            logger.info(f"  {action}: {', '.join(team_result.members_removed)}")

        for error in team_result.add_failures + team_result.remove_failures:
            logger.error(f"  Error: {error}")

        if not team_result.has_changes and not team_result.errors:
            logger.info("  No changes needed")

    logger.info("")
    logger.info("-" * 60)
    logger.info("Summary:")
    logger.info(f"  Control group members: {result.reference_count}")
    logger.info(f"  Teams processed: {len(result.teams)}")
    logger.info(f"  Tags created: {result.total_created}")
    logger.info(f"  Tags rebuilt: {result.total_recovered}")
    logger.info(f"  Members added: {result.total_added}")
    logger.info(f"  Members removed: {result.total_removed}")
    if result.total_failed_teams:
        logger.error(f"  Teams failed: {result.total_failed_teams}")
    if result.total_errors:
        logger.error(f"  Errors: {result.total_errors}")


async def run_sync(
    config_path: str | None = None,
    team_ids: list[str] | None = None,
    dry_run: bool = False,
    backup: bool = True,
) -> int:
    """Run the tag sync.

    Args:
        config_path: Path to the tag sync JSON config
        team_ids: Only sync these teams
        dry_run: If True, don't make changes
        backup: If True, back up tag membership before changing it

    Returns:
        Exit code
    """
    logger.info("=" * 60)
    logger.info("Teams Tag Sync")
    logger.info("=" * 60)

    if dry_run:
        logger.info("DRY RUN - no changes will be made")

    try:
        config = load_tag_sync_config(config_path)
        manager = TagSyncManager(config, dry_run=dry_run, backup=backup)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logger.info(f"Tag: {config.tag_name}")
    logger.info(f"Control group: {config.control_group_id}")
    if team_ids:
        logger.info(f"Teams: {', '.join(team_ids)}")
    else:
        logger.info(f"Team description pattern: {config.team_description_pattern}")

    try:
        result = await manager.sync(team_ids=team_ids)
    except GroupNotFoundError as e:
        logger.error(f"Cannot sync without the control group: {e}")
        return 1
    except Exception as e:
        logger.error(f"Tag sync failed: {e}")
        return 1

    print_result(result, dry_run=dry_run)
    return 0 if result.total_errors == 0 else 1


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Sync a Teams tag in every matching team from an Entra ID security group. "
        "Tags are created when missing and rebuilt when a deleted account leaves them unreadable.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    parser.add_argument(
        "--team",
        action="append",
        dest="teams",
        metavar="ID",
        help="Only sync this team (can be specified multiple times)",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to tag sync config (default: config/tag_sync.json)",
    )
    parser.add_argument(
        "--no-backup",
        action="store_true",
        help="Skip backing up tag membership before changes",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    exit_code = asyncio.run(
        run_sync(
            config_path=args.config,
            team_ids=args.teams,
            dry_run=args.dry_run,
            backup=not args.no_backup,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
