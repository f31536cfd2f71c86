"""Experiment specification types, error reporting and the command channel."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

UNKNOWN_UID = "unknown"


class Category(str, Enum):
    """Categories an experiment action belongs to."""

    SYSTEM = "system"
    SYSTEM_CPU = "system_cpu"
    SYSTEM_MEM = "system_mem"
    SYSTEM_DISK = "system_disk"
    SYSTEM_NETWORK = "system_network"
    SYSTEM_PROCESS = "system_process"
    SYSTEM_SCRIPT = "system_script"
    SYSTEM_FILE = "system_file"
    SYSTEM_KERNEL = "system_kernel"
    SYSTEM_SYSTEMD = "system_systemd"
    SYSTEM_TIME = "system_time"


class ErrorCode(Enum):
    """Kinds of experiment failure, each with its message template."""

    PARAMETER_ILLEGAL = "illegal `{}` parameter value: `{}`. {}"
    PARAMETER_LESS = "less parameter: `{}`"
    PARAMETER_INVALID = "invalid `{}` parameter value: `{}`. {}"
    OS_CMD_EXEC_FAILED = "exec os command failed: {}"
    CHANNEL_NIL = "channel is nil"
    COMMAND_NOT_FOUND = "`{}`: command not found"
    COMMAND_TASKSET_NOT_FOUND = "`taskset`: command not found"
    COMMAND_DD_NOT_FOUND = "`dd`: command not found"


class ExperimentError(Exception):
    """An experiment could not be created or destroyed."""

    def __init__(self, code: ErrorCode, *details: Any) -> None:
        self.code = code
        self.details = tuple(str(detail) for detail in details)
        super().__init__(code.value.format(*self.details))


class CommandError(ExperimentError):
    """A command run through a channel failed."""

    def __init__(self, command: str, arguments: str, stderr: str) -> None:
        self.command = command
        self.arguments = arguments
        self.stderr = stderr
        super().__init__(ErrorCode.OS_CMD_EXEC_FAILED, f"{command} {arguments}: {stderr}")


@dataclass(frozen=True)
class ExpFlag:
    """A command-line flag of an experiment model or action."""

    name: str
    desc: str
    no_args: bool = False
    required: bool = False
    default: str = ""


@dataclass
class ExpModel:
    """The parsed request for one experiment."""

    target: str = ""
    action_name: str = ""
    action_flags: dict[str, str] = field(default_factory=dict)


@dataclass
class Context:
    """Request-scoped values handed to an executor."""

    uid: str = ""
    destroy: bool = False
    target_pid: str | None = None
    cgroup_root: str = ""
    values: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionSpec:
    """Description of one action of an experiment model."""

    name: str
    short_desc: str
    long_desc: str
    executor: Any
    aliases: list[str] = field(default_factory=list)
    matchers: list[ExpFlag] = field(default_factory=list)
    flags: list[ExpFlag] = field(default_factory=list)
    example: str = ""
    programs: list[str] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
    process_hang: bool = False


@dataclass
class ModelSpec:
    """Description of an experiment target and its actions."""

    name: str
    short_desc: str
    long_desc: str
    actions: list[ActionSpec] = field(default_factory=list)
    flags: list[ExpFlag] = field(default_factory=list)
    example: str = ""

    def action(self, name: str) -> ActionSpec:
        """Return the action called ``name`` or carrying it as an alias."""
        for action in self.actions:
            if name == action.name or name in action.aliases:
                return action
        raise KeyError(f"{self.name} has no action {name!r}")


class Channel(abc.ABC):
    """Where experiment commands are carried out."""

    @abc.abstractmethod
    def run(self, command: str, args: str) -> str:
        """Run ``command`` with ``args`` and return its output; raise CommandError on failure."""

    @abc.abstractmethod
    def is_command_available(self, command: str) -> bool:
        """Tell whether ``command`` can be run."""

    @abc.abstractmethod
    def get_pids_by_process_name(self, name: str, process_key: str) -> list[str]:
        """Return the pids of processes matching ``name`` and ``process_key``."""


def parse_integer_list(name: str, value: str) -> list[str]:
    """Expand a list such as ``0-2,4`` into ``["0", "1", "2", "4"]``."""
    result: list[str] = []
    for part in value.split(","):
        part = part.strip()
        try:
            if "-" in part:
                low_text, high_text = part.split("-", 1)
                low, high = int(low_text), int(high_text)
                if low > high:
                    raise ValueError(f"{name}: range {part} starts after it ends")
                result.extend(str(number) for number in range(low, high + 1))
            else:
                result.append(str(int(part)))
        except ValueError as exc:
            raise ValueError(f"{name}: illegal value {part!r}, {exc}") from exc
    return result


def require_commands(channel: Channel | None, commands: Iterable[str]) -> None:
    """Raise unless the channel exists and can run every command."""
    if channel is None:
        raise ExperimentError(ErrorCode.CHANNEL_NIL)
    for command in commands:
        if not channel.is_command_available(command):
            raise ExperimentError(ErrorCode.COMMAND_NOT_FOUND, command)


def file_matchers() -> list[ExpFlag]:
    """Matchers shared by every file action."""
    return [ExpFlag(name="filepath", desc="file path", required=True)]