"""
CommandRegistry - Explicit command registration pattern

Bounded Context: Command registration and validation
Responsibilities:
  - Register commands with handlers and their required payload fields
  - Validate command existence and payload before execution
  - Provide introspection (available_commands, get_help)

Threading: Thread-safe (uses lock for write operations)
Pattern: Registry with explicit registration
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, Tuple


class CommandNotAvailableError(Exception):
    """Raised when attempting to execute an unregistered command"""
    pass


class CommandValidationError(ValueError):
    """Raised when a command payload lacks required fields"""

    def __init__(self, command: str, missing: Tuple[str, ...]):
        self.command = command
        self.missing = missing
        super().__init__(
            f"Command '{command}' missing required field(s): {', '.join(missing)}"
        )


@dataclass(frozen=True)
class CommandSpec:
    """Registered command: handler plus payload contract."""
    name: str
    handler: Callable[[Dict[str, Any]], Any]
    description: str
    required: Tuple[str, ...] = ()


class CommandRegistry:
    """
    Registry for MQTT commands with explicit registration.

    Handlers receive the full command payload (a dict) and may return a
    JSON-serializable result, which the control plane publishes as the
    command reply.

    Example:
        registry = CommandRegistry()
        registry.register(
            'stop', handler.stop, "Stop a participant session",
            required=('course_id', 'participant_id'),
        )
        result = registry.execute('stop', {'course_id': 'c1', 'participant_id': 'p1'})
    """

    def __init__(self):
        self._commands: Dict[str, CommandSpec] = {}
        self._lock = threading.Lock()

    def register(
        self,
        command: str,
        handler: Callable[[Dict[str, Any]], Any],
        description: str,
        required: Tuple[str, ...] = (),
    ) -> None:
        """
        Register a command with its handler function.

        Raises:
            ValueError: If command already registered (double registration)
        """
        with self._lock:
            if command in self._commands:
                raise ValueError(f"Command '{command}' already registered")
            self._commands[command] = CommandSpec(
                name=command,
                handler=handler,
                description=description,
                required=tuple(required),
            )

    def execute(self, command: str, command_data: Optional[Dict[str, Any]] = None) -> Any:
        """
        Execute a registered command.

        Returns:
            Whatever the handler returns

        Raises:
            CommandNotAvailableError: If command not registered
            CommandValidationError: If required payload fields are missing
        """
        spec = self._commands.get(command)
        if spec is None:
            raise CommandNotAvailableError(
                f"Command '{command}' not available. "
                f"Available commands: {', '.join(sorted(self.available_commands))}"
            )

        data = dict(command_data or {})
        missing = tuple(f for f in spec.required if data.get(f) in (None, ''))
        if missing:
            raise CommandValidationError(command, missing)

        return spec.handler(data)

    def is_available(self, command: str) -> bool:
        return command in self._commands

    @property
    def available_commands(self) -> Set[str]:
        """Snapshot of registered command names."""
        return set(self._commands.keys())

    def get_help(self) -> Dict[str, str]:
        """Command name → description (with required fields)."""
        help_text = {}
        for name, spec in self._commands.items():
            if spec.required:
                help_text[name] = f"{spec.description} (requires: {', '.join(spec.required)})"
            else:
                help_text[name] = spec.description
        return help_text

    def count(self) -> int:
        return len(self._commands)
