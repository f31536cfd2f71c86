"""Injecting delays and errors into a process's system calls with strace."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

from .destroy import destroy
from .spec import (
    ActionSpec,
    Category,
    Channel,
    Context,
    ErrorCode,
    ExperimentError,
    ExpFlag,
    ExpModel,
    ModelSpec,
    parse_integer_list,
)

STRACE_DELAY_BIN = "chaos_stracedelay"
STRACE_ERROR_BIN = "chaos_straceerror"
STRACE_PROGRAM = "strace"

_log = logging.getLogger(__name__)

_DELAY_EXAMPLE = """
# Create a strace 10s delay experiment to the process
blade create strace delay --pid 1 --syscall-name mmap --time 10s --delay-loc enter --first=1"""

_ERROR_EXAMPLE = """
# Create a strace error experiment to the process
blade create strace error --pid 1 --syscall-name mmap --return-value XX --delay-loc enter --first=1"""


def _when(args: str, first: str, end: str, step: str) -> str:
    """Append the ``when=`` clause that selects which calls are hit."""
    if not first:
        return args
    args = f"{args}:when={first}"
    if step and end:
        return f"{args}..{end}+{step}"
    if step:
        return f"{args}+{step}"
    if end:
        return f"{args}..{end}"
    return args


def _with_pids(pids: list[str], args: str) -> str:
    for pid in pids:
        args = f"-p {pid} {args}"
    return args


def delay_args(
    pids: list[str], syscall_name: str, time: str, delay_loc: str, first: str, end: str, step: str
) -> str:
    """strace arguments that delay ``syscall_name`` on entry or exit in each of ``pids``."""
    args = ""
    if delay_loc == "enter":
        args = f"-f -e inject={syscall_name}:delay_enter={time}"
    elif delay_loc == "exit":
        args = f"-f -e inject={syscall_name}:delay_exit={time}"
    return _with_pids(pids, _when(args, first, end, step))


def error_args(
    pids: list[str], syscall_name: str, return_value: str, first: str, end: str, step: str
) -> str:
    """strace arguments that make ``syscall_name`` fail with ``return_value`` in each of ``pids``."""
    args = f"-f -e inject={syscall_name}:error={return_value}"
    return _with_pids(pids, _when(args, first, end, step))


def _strace_path() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(sys.argv[0])), STRACE_PROGRAM)


def _parse_pids(text: str) -> list[str]:
    if not text:
        return []
    try:
        return parse_integer_list("pid", text)
    except ValueError as exc:
        raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, "pid", text, exc) from exc


def _required(flags: dict[str, str], name: str) -> str:
    value = flags.get(name, "")
    if not value:
        _log.error("%s is nil", name)
        raise ExperimentError(ErrorCode.PARAMETER_LESS, name)
    return value


def _run_strace(channel: Channel, pids: list[str], args: str) -> str:
    if not pids:
        raise ExperimentError(ErrorCode.PARAMETER_INVALID, "pid", "", "pid is nil")
    return channel.run(_strace_path(), args)


@dataclass
class StraceDelayExecutor:
    """Delays a system call of the target processes; destroy stops strace."""

    channel: Channel | None = None
    name: str = "delay"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        if self.channel is None:
            raise ExperimentError(ErrorCode.CHANNEL_NIL)
        flags = model.action_flags
        pids = _parse_pids(flags.get("pid", ""))
        time = _required(flags, "time")
        syscall_name = _required(flags, "syscall-name")
        delay_loc = _required(flags, "delay-loc")
        if ctx.destroy:
            return destroy(self.channel, ctx, "strace delay", STRACE_DELAY_BIN)
        args = delay_args(
            pids,
            syscall_name,
            time,
            delay_loc,
            flags.get("first", ""),
            flags.get("end", ""),
            flags.get("step", ""),
        )
        return _run_strace(self.channel, pids, args)


@dataclass
class StraceErrorExecutor:
    """Makes a system call of the target processes fail; destroy stops strace."""

    channel: Channel | None = None
    name: str = "error"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        if self.channel is None:
            raise ExperimentError(ErrorCode.CHANNEL_NIL)
        flags = model.action_flags
        pids = _parse_pids(flags.get("pid", ""))
        return_value = _required(flags, "return-value")
        syscall_name = _required(flags, "syscall-name")
        if ctx.destroy:
            return destroy(self.channel, ctx, "strace delay")
        args = error_args(
            pids,
            syscall_name,
            return_value,
            flags.get("first", ""),
            flags.get("end", ""),
            flags.get("step", ""),
        )
        return _run_strace(self.channel, pids, args)


def _matchers() -> list[ExpFlag]:
    return [
        ExpFlag(name="pid", desc="The Pid of the target process", required=True),
        ExpFlag(
            name="cgroup-root",
            desc="cgroup root path, default value /sys/fs/cgroup",
            default="/sys/fs/cgroup",
        ),
    ]


def strace_delay_action() -> ActionSpec:
    """The ``strace delay`` action."""
    return ActionSpec(
        name="delay",
        short_desc="Delay the syscall of the target pid",
        long_desc="Delay syscall of the specified process, if the process exists",
        executor=StraceDelayExecutor(),
        matchers=_matchers(),
        flags=[
            ExpFlag(name="syscall-name", desc="The target syscall which will be injected", required=True),
            ExpFlag(
                name="time",
                desc="sleep time, the unit of time can be specified: s,ms,us,ns",
                required=True,
            ),
            ExpFlag(
                name="delay-loc",
                desc=(
                    "if the flag is enter, the fault will be injected before the syscall is executed. "
                    "if the flag is exit, the fault will be injected after the syscall is executed"
                ),
                required=True,
            ),
            ExpFlag(name="first", desc="if the flag is set, the fault will be injected to the first met syscall"),
            ExpFlag(name="end", desc="if the flag is set, the fault will be injected to the last met syscall"),
            ExpFlag(name="step", desc="the fault will be injected intervally"),
        ],
        example=_DELAY_EXAMPLE,
        programs=[STRACE_DELAY_BIN],
        categories=[Category.SYSTEM_KERNEL],
        process_hang=True,
    )


def strace_error_action() -> ActionSpec:
    """The ``strace error`` action."""
    return ActionSpec(
        name="error",
        short_desc="change the syscall's return value of the target pid",
        long_desc="change the syscall's return value of the specified process, if the process exists",
        executor=StraceErrorExecutor(),
        matchers=_matchers(),
        flags=[
            ExpFlag(name="syscall-name", desc="The target syscall which will be injected", required=True),
            ExpFlag(name="return-value", desc="the return-value the syscall will return", required=True),
            ExpFlag(name="first", desc="if the flag is true, the fault will be injected to the first met syscall"),
            ExpFlag(name="end", desc="if the flag is true, the fault will be injected to the last met syscall"),
            ExpFlag(name="step", desc="the fault will be injected intervally"),
        ],
        example=_ERROR_EXAMPLE,
        programs=[STRACE_ERROR_BIN],
        categories=[Category.SYSTEM_KERNEL],
        process_hang=True,
    )


def kernel_model_spec() -> ModelSpec:
    """The ``strace`` experiment model."""
    return ModelSpec(
        name="strace",
        short_desc="strace experiment",
        long_desc="strace experiment contains syscall delay or syscall error",
        actions=[strace_delay_action(), strace_error_action()],
    )