"""
Command Handler - Routes Redis commands to API methods.

Provides command routing with argument validation and error handling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from machine_control.core.exceptions import MachineControlError
from machine_control.loggers import logger


# Type alias for command handlers
CommandHandlerFunc = Callable[..., Awaitable[dict[str, Any]]]


@dataclass
class CommandResponse:
    """
    Standardized response for command execution.

    Attributes:
        command_id: The ID of the executed command.
        success: Whether the command succeeded.
        status_code: Outcome classification of machine operations.
        message: Human-readable message.
        data: Optional response data.
    """

    command_id: Optional[int] = None
    success: bool = False
    status_code: Optional[int] = None
    message: Optional[str] = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the response to a dictionary."""
        return {
            "command_id": self.command_id,
            "success": self.success,
            "status_code": self.status_code,
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
    Routes commands to their appropriate handlers.

    Every machine command carries the caller's ``token`` in its data;
    the facade validates it.
    """

    def __init__(self, api: Any) -> None:
        """
        Initialize the command handler.

        Args:
            api: The MachineApiFacade instance.
        """
        self._api = api
        self._commands: dict[str, CommandDefinition] = {}
        self._register_default_commands()

    def _register_default_commands(self) -> None:
        """Register all default command handlers."""
        self.register(
            "request_machine",
            self._api.request_machine,
            ["token", "location_id", "job_id"],
            description="Reserve an available machine at a location",
        )
        self.register(
            "get_machine",
            self._api.get_machine,
            ["token", "machine_id"],
            description="Get machine state",
        )
        self.register(
            "start_machine",
            self._api.start_machine,
            ["token", "machine_id"],
            description="Start the cycle of a reserved machine",
        )
        self.register(
            "release_machine",
            self._api.release_machine,
            ["token", "machine_id"],
            optional_args=["job_id"],
            description="Release a reserved machine",
        )
        self.register(
            "release_expired",
            self._api.release_expired,
            ["token", "location_id"],
            description="Release holds older than the configured maximum",
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

        kwargs = {arg: data.get(arg) for arg in definition.required_args}
        missing = [arg for arg, value in kwargs.items() if value is None]
        if missing:
            response.message = f"Missing required arguments: {missing}"
            return response.to_dict()

        for arg in definition.optional_args:
            if data.get(arg) is not None:
                kwargs[arg] = data[arg]

        try:
            result = await definition.handler(**kwargs)
        except MachineControlError as e:
            logger.error(f"Error executing command '{command}': {e.message}")
            response.message = e.message
            response.data = e.to_dict()
            return response.to_dict()
        except Exception as e:
            logger.exception(f"Unexpected error executing command '{command}': {e}")
            response.message = f"Error: {e}"
            return response.to_dict()

        response.success = bool(result.get("success", False))
        response.status_code = result.get("status_code")
        response.message = result.get("message")
        response.data = result.get("data", result.get("machine"))
        return response.to_dict()


async def machine_control_commands(
    command_data: dict[str, Any],
    api: Any,
) -> dict[str, Any]:
    """
    Execute a command on the machine control API.

    This is the entry point for command execution from Redis pub/sub.

    Args:
        command_data: Dictionary containing command name, ID, and data.
        api: The MachineApiFacade instance.

    Returns:
        Response dictionary with execution result.
    """
    handler = CommandHandler(api)
    return await handler.execute(command_data)
