"""
Command Handler - Routes Redis commands to facade methods.

Provides command routing with argument validation and error handling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from prize_vending.loggers import logger


# Type alias for command handlers
CommandHandlerFunc = Callable[..., Awaitable[dict[str, Any]]]


@dataclass
class CommandResponse:
    """
    Standardized response for command execution.

    Attributes:
        command_id: The ID of the executed command.
        success: Whether the command succeeded.
        message: Human-readable message.
        data: Optional response data.
    """

    command_id: Optional[int] = None
    success: bool = False
    message: Optional[str] = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the response to a dictionary."""
        return {
            "command_id": self.command_id,
            "success": self.success,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class CommandDefinition:
    """
    Definition of a command.

    Attributes:
        name: Command name.
        handler: Handler function.
        required_args: Argument names that must be present.
        optional_args: Argument names passed through when present.
        description: Human-readable description.
    """

    name: str
    handler: CommandHandlerFunc
    required_args: list[str]
    optional_args: list[str] = field(default_factory=list)
    description: str = ""


class CommandHandler:
    """
    Routes commands to their handlers on the kiosk facade.
    """

    def __init__(self, api: Any) -> None:
        """
        Initialize the command handler.

        Args:
            api: The KioskFacade instance.
        """
        self._api = api
        self._commands: dict[str, CommandDefinition] = {}
        self._register_default_commands()

    def _register_default_commands(self) -> None:
        """Register all default command handlers."""
        # Device initialization
        self.register(
            "init_devices",
            self._api.init_devices,
            [],
            description="Open serial links and start background tasks",
        )

        # Dispensing
        self.register(
            "dispense",
            self._api.dispense,
            ["round_token", "duration_ms"],
            description="Dispense the prize earned by a round",
        )
        self.register(
            "manual_dispense",
            self._api.manual_dispense,
            ["slot"],
            description="Dispense one prize from a slot for testing",
        )

        # Slot maintenance
        self.register(
            "slot_snapshot",
            self._api.slot_snapshot,
            [],
            description="Get every slot counter",
        )
        self.register(
            "reset_slots",
            self._api.reset_slots,
            [],
            description="Reset every slot counter after a refill",
        )
        self.register(
            "reset_slot",
            self._api.reset_slot,
            ["slot"],
            description="Reset one slot counter after a refill",
        )
        self.register(
            "slots_needing_refill",
            self._api.slots_needing_refill,
            [],
            optional_args=["threshold"],
            description="List slots close to capacity",
        )

        # Vending controller
        self.register(
            "self_check",
            self._api.self_check,
            [],
            description="Run a controller self-check",
        )
        self.register(
            "channel_status",
            self._api.channel_status,
            ["channel"],
            description="Query one slot channel",
        )
        self.register(
            "vending_status",
            self._api.vending_status,
            [],
            description="Get device and queue state",
        )

        # Offline log queue
        self.register(
            "flush_logs",
            self._api.flush_logs,
            [],
            description="Deliver queued log entries",
        )
        self.register(
            "pending_logs",
            self._api.pending_logs,
            [],
            description="List undelivered log entries",
        )
        self.register(
            "log_history",
            self._api.log_history,
            [],
            optional_args=["limit"],
            description="List recent log entries, newest first",
        )

        # Hold sensor
        self.register(
            "set_sensor_enabled",
            self._api.set_sensor_enabled,
            ["enabled"],
            description="Arm or disarm the hold sensor",
        )

    def register(
        self,
        command_name: str,
        handler: CommandHandlerFunc,
        required_args: list[str],
        optional_args: Optional[list[str]] = None,
        description: str = "",
    ) -> None:
        """
        Register a command handler.

        Args:
            command_name: The name of the command.
            handler: The async handler function.
            required_args: List of required argument names.
            optional_args: List of optional argument names.
            description: Human-readable description.
        """
        self._commands[command_name] = CommandDefinition(
            name=command_name,
            handler=handler,
            required_args=required_args,
            optional_args=optional_args or [],
            description=description,
        )

    def get_available_commands(self) -> list[dict[str, Any]]:
        """Get list of available commands with their descriptions."""
        return [
            {
                "name": cmd.name,
                "required_args": cmd.required_args,
                "optional_args": cmd.optional_args,
                "description": cmd.description,
            }
            for cmd in self._commands.values()
        ]

    async def execute(self, command_data: dict[str, Any]) -> dict[str, Any]:
        """
        Execute a command based on command data.

        Args:
            command_data: Dictionary containing 'command', 'command_id', and 'data'.

        Returns:
            Response dictionary with execution result.
        """
        command = command_data.get("command")
        command_id = command_data.get("command_id")
        data = command_data.get("data", {}) or {}

        response = CommandResponse(command_id=command_id)

        if command not in self._commands:
            logger.warning(f"Unknown command: {command}")
            response.message = f"Unknown command: {command}"
            return response.to_dict()

        definition = self._commands[command]

        try:
            kwargs = {arg: data.get(arg) for arg in definition.required_args}

            missing = [arg for arg in definition.required_args if kwargs.get(arg) is None]
            if missing:
                response.message = f"Missing required arguments: {missing}"
                return response.to_dict()

            for arg in definition.optional_args:
                if data.get(arg) is not None:
                    kwargs[arg] = data[arg]

            result = await definition.handler(**kwargs)

            if isinstance(result, dict):
                response.success = result.get("success", False)
                response.message = result.get("message")
                response.data = result.get("data")
            else:
                response.success = True
                response.data = result

        except Exception as e:
            logger.error(f"Error executing command '{command}': {e}")
            response.success = False
            response.message = f"Error: {e}"

        return response.to_dict()


async def prize_vending_commands(
    command_data: dict[str, Any],
    api: Any,
) -> dict[str, Any]:
    """
    Execute a command on the kiosk facade.

    This is the entry point for command execution from Redis pub/sub.

    Args:
        command_data: Dictionary containing command name, ID, and data.
        api: The KioskFacade instance.

    Returns:
        Response dictionary with execution result.
    """
    handler = CommandHandler(api)
    return await handler.execute(command_data)
