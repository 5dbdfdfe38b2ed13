"""
Tests for Redis command routing.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from prize_vending.application.command_handler import (
    CommandHandler,
    CommandResponse,
    prize_vending_commands,
)


@pytest.fixture
def api():
    api = MagicMock()
    api.dispense = AsyncMock(
        return_value={"success": True, "message": "Dispensed", "data": {"slot": 24}}
    )
    api.reset_slot = AsyncMock(return_value={"success": False, "message": "Redis down"})
    api.slot_snapshot = AsyncMock(return_value=[{"slot": 24}])
    api.self_check = AsyncMock(side_effect=RuntimeError("port gone"))
    return api


class TestCommandHandler:
    """Tests for CommandHandler."""

    def test_response_to_dict(self):
        response = CommandResponse(command_id=3, success=True, message="ok")
        assert response.to_dict() == {
            "command_id": 3,
            "success": True,
            "message": "ok",
            "data": None,
        }

    @pytest.mark.asyncio
    async def test_routes_with_arguments(self, api):
        response = await prize_vending_commands(
            {
                "command": "dispense",
                "command_id": 7,
                "data": {"round_token": "round-1", "duration_ms": 65_000},
            },
            api,
        )

        api.dispense.assert_awaited_once_with(round_token="round-1", duration_ms=65_000)
        assert response == {
            "command_id": 7,
            "success": True,
            "message": "Dispensed",
            "data": {"slot": 24},
        }

    @pytest.mark.asyncio
    async def test_unknown_command(self, api):
        response = await CommandHandler(api).execute({"command": "pay_out", "command_id": 1})

        assert response["success"] is False
        assert response["message"] == "Unknown command: pay_out"

    @pytest.mark.asyncio
    async def test_missing_arguments(self, api):
        """Test a null argument counts as missing and the handler is not called."""
        response = await CommandHandler(api).execute(
            {"command": "dispense", "data": {"round_token": "round-1", "duration_ms": None}}
        )

        assert response["success"] is False
        assert "duration_ms" in response["message"]
        api.dispense.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_result_passed_through(self, api):
        response = await CommandHandler(api).execute({"command": "reset_slot", "data": {"slot": 4}})

        api.reset_slot.assert_awaited_once_with(slot=4)
        assert response["success"] is False
        assert response["message"] == "Redis down"

    @pytest.mark.asyncio
    async def test_non_dict_result(self, api):
        response = await CommandHandler(api).execute({"command": "slot_snapshot", "data": None})

        assert response["success"] is True
        assert response["data"] == [{"slot": 24}]

    @pytest.mark.asyncio
    async def test_handler_exception(self, api):
        response = await CommandHandler(api).execute({"command": "self_check"})

        assert response["success"] is False
        assert response["message"] == "Error: port gone"

    @pytest.mark.asyncio
    async def test_log_history_limit_is_optional(self, api):
        api.log_history = AsyncMock(return_value={"success": True, "message": "ok", "data": {}})
        handler = CommandHandler(api)

        await handler.execute({"command": "log_history", "data": {"limit": 5}})
        await handler.execute({"command": "log_history", "data": {}})

        assert api.log_history.await_args_list[0].kwargs == {"limit": 5}
        assert api.log_history.await_args_list[1].kwargs == {}

    @pytest.mark.asyncio
    async def test_refill_threshold_is_optional(self, api):
        api.slots_needing_refill = AsyncMock(return_value=[])
        handler = CommandHandler(api)

        await handler.execute({"command": "slots_needing_refill", "data": {"threshold": 0.5}})
        await handler.execute({"command": "slots_needing_refill"})

        assert api.slots_needing_refill.await_args_list[0].kwargs == {"threshold": 0.5}
        assert api.slots_needing_refill.await_args_list[1].kwargs == {}

    def test_available_commands(self, api):
        names = {command["name"] for command in CommandHandler(api).get_available_commands()}

        assert {
            "init_devices",
            "dispense",
            "manual_dispense",
            "slot_snapshot",
            "reset_slots",
            "reset_slot",
            "slots_needing_refill",
            "self_check",
            "channel_status",
            "vending_status",
            "flush_logs",
            "pending_logs",
            "log_history",
            "set_sensor_enabled",
        } <= names
