"""Tests for m365admin.scripts.offboard_user module."""

import logging
import sys
from unittest.mock import AsyncMock, patch

import pytest

from m365admin.offboarding.workflow import OffboardResult, OffboardStep, StepResult
from m365admin.scripts.offboard_user import main, print_result, run_offboard, select_steps


class TestSelectSteps:
    """Tests for select_steps."""

    def test_defaults_exclude_wipe(self):
        steps = select_steps()

        assert OffboardStep.WIPE_DEVICES not in steps
        assert OffboardStep.DISABLE_ACCOUNT in steps

    def test_wipe_is_opt_in(self):
        assert OffboardStep.WIPE_DEVICES in select_steps(wipe_devices=True)

    def test_skip(self):
        steps = select_steps(skip=["remove-groups", "disable-inbox-rules"])

        assert OffboardStep.REMOVE_GROUPS not in steps
        assert OffboardStep.DISABLE_INBOX_RULES not in steps
        assert OffboardStep.REVOKE_SESSIONS in steps


class TestMainCLI:
    """Tests for main CLI function."""

    def test_requires_user(self):
        with (
            patch.object(sys, "argv", ["offboard-user"]),
            pytest.raises(SystemExit) as exc_info,
        ):
            main()

        assert exc_info.value.code == 2

    def test_personal_devices_requires_wipe(self):
        with (
            patch.object(
                sys, "argv", ["offboard-user", "a@contoso.com", "--include-personal-devices"]
            ),
            pytest.raises(SystemExit) as exc_info,
        ):
            main()

        assert exc_info.value.code == 2

    def test_rejects_unknown_step(self):
        with (
            patch.object(sys, "argv", ["offboard-user", "a@contoso.com", "--skip", "nope"]),
            pytest.raises(SystemExit) as exc_info,
        ):
            main()

        assert exc_info.value.code == 2

    def test_passes_arguments(self):
        argv = [
            "offboard-user",
            "a@contoso.com",
            "--dry-run",
            "--wipe-devices",
            "--skip",
            "disable-inbox-rules",
        ]
        with (
            patch.object(sys, "argv", argv),
            patch(
                "m365admin.scripts.offboard_user.run_offboard", new=AsyncMock(return_value=0)
            ) as mock,
            pytest.raises(SystemExit) as exc_info,
        ):
            main()

        assert exc_info.value.code == 0
        kwargs = mock.call_args.kwargs
        assert kwargs["user_principal_name"] == "a@contoso.com"
        assert kwargs["dry_run"] is True
        assert kwargs["backup"] is True
        assert kwargs["include_personal_devices"] is False
        assert OffboardStep.WIPE_DEVICES in kwargs["steps"]
        assert OffboardStep.DISABLE_INBOX_RULES not in kwargs["steps"]


class TestRunOffboard:
    """Tests for run_offboard."""

    async def test_success_returns_0(self):
        result = OffboardResult(
            user_principal_name="a@contoso.com",
            user_id="u1",
            display_name="Alice",
            steps=[StepResult(step=OffboardStep.DISABLE_ACCOUNT, done=["sign-in blocked"])],
        )
        with patch("m365admin.scripts.offboard_user.OffboardManager") as manager_class:
            manager_class.return_value.offboard = AsyncMock(return_value=result)

            code = await run_offboard("a@contoso.com", {OffboardStep.DISABLE_ACCOUNT})

        assert code == 0
        manager_class.assert_called_once_with(
            dry_run=False, backup=True, include_personal_devices=False
        )

    async def test_user_not_found_returns_1(self):
        result = OffboardResult(user_principal_name="x@contoso.com", error="User not found")
        with patch("m365admin.scripts.offboard_user.OffboardManager") as manager_class:
            manager_class.return_value.offboard = AsyncMock(return_value=result)

            assert await run_offboard("x@contoso.com", {OffboardStep.DISABLE_ACCOUNT}) == 1

    async def test_unexpected_error_returns_1(self):
        with patch("m365admin.scripts.offboard_user.OffboardManager") as manager_class:
            manager_class.return_value.offboard = AsyncMock(side_effect=ValueError("no creds"))

            assert await run_offboard("a@contoso.com", {OffboardStep.DISABLE_ACCOUNT}) == 1


class TestPrintResult:
    """Tests for print_result."""

    def test_lists_step_outcomes(self, caplog):
        result = OffboardResult(
            user_principal_name="a@contoso.com",
            user_id="u1",
            display_name="Alice",
            backup_path="/backups/offboard_a.json",
            steps=[
                StepResult(step=OffboardStep.REMOVE_GROUPS, done=["removed from Officers"]),
                StepResult(step=OffboardStep.DISABLE_INBOX_RULES, errors=["access denied"]),
            ],
        )

        with caplog.at_level(logging.INFO):
            print_result(result)

        assert "remove-groups: OK" in caplog.text
        assert "removed from Officers" in caplog.text
        assert "disable-inbox-rules: ERRORS" in caplog.text
        assert "Error: access denied" in caplog.text
        assert "Errors: 1" in caplog.text
