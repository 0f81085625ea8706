"""CLI script to offboard a departing user.

Blocks sign-in, revokes sessions, removes authentication methods and group
memberships, optionally wipes managed devices, and disables inbox rules.
Each step runs independently; the summary lists anything left to finish
by hand.

Prerequisites for the inbox rule step:
1. PowerShell 7+ with ExchangeOnlineManagement module
2. Azure AD App with Exchange.ManageAsApp permission
3. Certificate-based authentication configured
"""

import argparse
import asyncio
import logging
import sys

from m365admin.offboarding.workflow import (
    DEFAULT_STEPS,
    OffboardManager,
    OffboardResult,
    OffboardStep,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

# Silence verbose HTTP request logging
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("azure.identity").setLevel(logging.WARNING)
logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)

STEP_NAMES = [step.value for step in OffboardStep]


def select_steps(skip: list[str] | None = None, wipe_devices: bool = False) -> set[OffboardStep]:
    """Work out which steps to run from the CLI flags."""
    steps = set(DEFAULT_STEPS)
    if wipe_devices:
        steps.add(OffboardStep.WIPE_DEVICES)
    for name in skip or []:
        steps.discard(OffboardStep(name))
    return steps


def print_result(result: OffboardResult, dry_run: bool = False) -> None:
    """Print offboarding results in a readable format."""
    logger.info("")
    logger.info("=" * 60)
    logger.info(f"Offboarding Results: {result.user_principal_name}")
    logger.info("=" * 60)

    if result.error:
        logger.error(f"FAILED: {result.error}")
        return

    logger.info(f"User: {result.display_name} ({result.user_id})")
    if result.backup_path:
        logger.info(f"Backup: {result.backup_path}")
    elif not dry_run:
        logger.warning("Backup: none")

    for step in result.steps:
        status = "OK" if step.ok else "ERRORS"
        logger.info(f"\n{step.step.value}: {status}")
        for item in step.done:
            logger.info(f"  {item}")
        for item in step.skipped:
            logger.info(f"  Skipped: {item}")
        for error in step.errors:
            logger.error(f"  Error: {error}")
        if not step.done and not step.skipped and not step.errors:
            logger.info("  Nothing to do")

    logger.info("")
    logger.info("-" * 60)
    logger.info("Summary:")
    logger.info(f"  Steps run: {len(result.steps)}")
    if result.total_errors:
        logger.error(f"  Errors: {result.total_errors} (finish these steps manually)")


async def run_offboard(
    user_principal_name: str,
    steps: set[OffboardStep],
    dry_run: bool = False,
    backup: bool = True,
    include_personal_devices: bool = False,
) -> int:
    """Offboard a single user.

    Args:
        user_principal_name: UPN of the departing user
        steps: Steps to run
        dry_run: If True, don't make changes
        backup: If True, snapshot account state first
        include_personal_devices: Also wipe personally owned devices

    Returns:
        Exit code
    """
    logger.info("=" * 60)
    logger.info("User Offboarding")
    logger.info("=" * 60)

    if dry_run:
        logger.info("DRY RUN - no changes will be made")

    logger.info(f"User: {user_principal_name}")
    logger.info(f"Steps: {', '.join(s.value for s in OffboardStep if s in steps)}")

    manager = OffboardManager(
        dry_run=dry_run,
        backup=backup,
        include_personal_devices=include_personal_devices,
    )

    try:
        result = await manager.offboard(user_principal_name, steps)
    except Exception as e:
        logger.error(f"Offboarding failed: {e}")
        return 1

    print_result(result, dry_run=dry_run)
    return 0 if result.total_errors == 0 else 1


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Offboard a departing user from Entra ID and Exchange Online.",
    )
    parser.add_argument(
        "user",
        metavar="UPN",
        help="User principal name of the departing user",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    parser.add_argument(
        "--wipe-devices",
        action="store_true",
        help="Remote wipe the user's company-owned managed devices",
    )
    parser.add_argument(
        "--include-personal-devices",
        action="store_true",
        help="With --wipe-devices, also wipe personally owned devices",
    )
    parser.add_argument(
        "--skip",
        choices=STEP_NAMES,
        action="append",
        metavar="STEP",
        help=f"Skip a step (can be specified multiple times). Available: {', '.join(STEP_NAMES)}",
    )
    parser.add_argument(
        "--no-backup",
        action="store_true",
        help="Skip the account state backup",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    if args.include_personal_devices and not args.wipe_devices:
        parser.error("--include-personal-devices requires --wipe-devices")

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    steps = select_steps(skip=args.skip, wipe_devices=args.wipe_devices)
    if not steps:
        parser.error("Every step was skipped; nothing to do")

    exit_code = asyncio.run(
        run_offboard(
            user_principal_name=args.user,
            steps=steps,
            dry_run=args.dry_run,
            backup=not args.no_backup,
            include_personal_devices=args.include_personal_devices,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
