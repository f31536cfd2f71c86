"""Loading memory up to a percentage or a reserve, in RAM or in page cache."""

from __future__ import annotations

import dataclasses
import logging
import os
import re
import sys
import time
from dataclasses import dataclass
from typing import NamedTuple, NoReturn

import psutil

from .cgroup import DEFAULT_CGROUP_ROOT, CgroupError, memory_stats
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
    require_commands,
)

BURN_MEM_BIN = "chaos_burnmem"
PAGE_COUNTER_MAX = 9223372036854770000
PROCESS_OOM_ADJ = "/proc/{}/oom_adj"
OOM_MIN_ADJ = "-17"
DIR_NAME = "burnmem_tmpfs"
FILE_NAME = "file"
DEFAULT_RATE = 100
_MB = 1024 * 1024

_log = logging.getLogger(__name__)
_INTEGER = re.compile(r"[+-]?[0-9]+")

_EXAMPLE = """
# The execution memory footprint is 50%
blade create mem load --mode ram --mem-percent 50

# The execution memory footprint is 50%, cache model
blade create mem load --mode cache --mem-percent 50

# The execution memory footprint is 50%, usage contains buffer/cache
blade create mem load --mode ram --mem-percent 50 --include-buffer-cache

# The execution memory footprint is 50%, avoid mem-burn process being killed
blade create mem load --mode ram --mem-percent 50 --avoid-being-killed

# The execution memory footprint is 50% for 200 seconds
blade create mem load --mode ram --mem-percent 50 --timeout 200

# 200M memory is reserved
blade create mem load --mode ram --reserve 200 --rate 100"""


class MemoryAmounts(NamedTuple):
    """Total and available memory, in bytes."""

    total: int
    available: int


class MemSize(NamedTuple):
    """Total memory and the amount still to be filled, in megabytes."""

    total: int
    expected: int


def _div(value: int, divisor: int) -> int:
    """Integer division truncating toward zero."""
    quotient = abs(value) // divisor
    return quotient if value >= 0 else -quotient


def available_and_total(ctx: Context, mode: str, include_buffer_cache: bool) -> MemoryAmounts:
    """Measure total and available memory.

    With a target pid and a memory limit on its cgroup, the cgroup's figures
    are used; otherwise the host's. In ``ram`` mode without
    ``include_buffer_cache`` the page cache counts as available.
    """
    count_cache = mode == "ram" and not include_buffer_cache
    if ctx.target_pid is not None:
        if not _INTEGER.fullmatch(ctx.target_pid):
            raise ExperimentError(
                ErrorCode.OS_CMD_EXEC_FAILED, f"load cgroup error, illegal pid {ctx.target_pid!r}"
            )
        root = ctx.cgroup_root or DEFAULT_CGROUP_ROOT
        _log.debug("get mem usage by cgroup, root path: %s", root)
        try:
            stats = memory_stats(root, int(ctx.target_pid))
        except (CgroupError, OSError, ValueError) as exc:
            raise ExperimentError(ErrorCode.OS_CMD_EXEC_FAILED, f"load cgroup stat error, {exc}") from exc
        if stats["limit"] < PAGE_COUNTER_MAX:
            total = stats["limit"]
            available = total - stats["usage"]
            if count_cache:
                available += stats["cache"]
            return MemoryAmounts(total, available)

    try:
        virtual = psutil.virtual_memory()
    except (OSError, psutil.Error) as exc:
        raise ExperimentError(ErrorCode.OS_CMD_EXEC_FAILED, f"get memory fail, {exc}") from exc
    total = int(virtual.total)
    available = int(virtual.free)
    if count_cache:
        available += int(getattr(virtual, "buffers", 0)) + int(getattr(virtual, "cached", 0))
    return MemoryAmounts(total, available)


def calculate_mem_size(total: int, available: int, percent: int, reserve: int) -> MemSize:
    """Work out, in megabytes, how much more memory to take.

    A non-zero ``percent`` leaves ``100 - percent`` of the total free;
    otherwise ``reserve`` megabytes are left free.
    """
    if percent != 0:
        reserved = _div(_div(_div(total * (100 - percent), 100), 1024), 1024)
    else:
        reserved = reserve
    expected = _div(_div(available, 1024), 1024) - reserved
    _log.debug(
        "available: %d, percent: %d, reserved: %d, expectSize: %d",
        _div(_div(available, 1024), 1024),
        percent,
        reserved,
        expected,
    )
    return MemSize(_div(_div(total, 1024), 1024), expected)


def _parse_int(name: str, text: str, detail: str = "it must be a positive integer") -> int:
    if not _INTEGER.fullmatch(text):
        raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, name, text, detail)
    return int(text)


def _program_dir() -> str:
    return os.path.dirname(os.path.abspath(sys.argv[0]))


@dataclass
class MemExecutor:
    """Takes memory until the target is reached; destroy stops the running load."""

    channel: Channel | None = None
    name: str = "mem"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        require_commands(self.channel, ["dd", "mount", "umount"])
        flags = model.action_flags
        if ctx.destroy:
            return destroy(self.channel, ctx, "mem load", BURN_MEM_BIN)

        percent_text = flags.get("mem-percent", "")
        reserve_text = flags.get("reserve", "")
        rate_text = flags.get("rate", "")
        mode = flags.get("mode", "")
        include_buffer_cache = flags.get("include-buffer-cache") == "true"
        avoid_being_killed = flags.get("avoid-being-killed") == "true"

        percent = 0
        reserve = 0
        if percent_text:
            percent = _parse_int("mem-percent", percent_text)
            if not 0 <= percent <= 100:
                raise ExperimentError(
                    ErrorCode.PARAMETER_ILLEGAL,
                    "mem-percent",
                    percent_text,
                    "it must be a positive integer and not bigger than 100",
                )
        elif reserve_text:
            reserve = _parse_int("reserve", reserve_text, f"invalid syntax: {reserve_text!r}")
        else:
            percent = 100

        rate = _parse_int("rate", rate_text) if rate_text else 0

        ctx = dataclasses.replace(ctx, cgroup_root=flags.get("cgroup-root", ""))
        self._start(ctx, percent, reserve, rate, mode, include_buffer_cache, avoid_being_killed)

    def _start(
        self,
        ctx: Context,
        percent: int,
        reserve: int,
        rate: int,
        mode: str,
        include_buffer_cache: bool,
        avoid_being_killed: bool,
    ) -> NoReturn:
        if avoid_being_killed:
            self._protect_from_oom_killer(mode)
        if mode == "cache":
            self._burn_with_cache(ctx, percent, reserve, rate, mode, include_buffer_cache)
        self._burn_with_ram(ctx, percent, reserve, rate, mode, include_buffer_cache)

    @staticmethod
    def _protect_from_oom_killer(mode: str) -> None:
        adj_file = PROCESS_OOM_ADJ.format(os.getpid())
        if not os.path.exists(adj_file):
            _log.error("score adjust file: %s not exists", adj_file)
            return
        try:
            with open(adj_file, "w", encoding="utf-8") as handle:
                handle.write(OOM_MIN_ADJ)
        except OSError as exc:
            _log.error(
                "run burn memory by %s mode failed, cannot edit the process oom_score_adj, %s", mode, exc
            )

    @staticmethod
    def _expected(ctx: Context, percent: int, reserve: int, mode: str, include_buffer_cache: bool) -> int:
        amounts = available_and_total(ctx, mode, include_buffer_cache)
        return calculate_mem_size(amounts.total, amounts.available, percent, reserve).expected

    def _burn_with_cache(
        self, ctx: Context, percent: int, reserve: int, rate: int, mode: str, include_buffer_cache: bool
    ) -> NoReturn:
        file_path = os.path.join(_program_dir(), DIR_NAME, FILE_NAME)
        file_count = 1
        while True:
            time.sleep(1)
            expected = self._expected(ctx, percent, reserve, mode, include_buffer_cache)
            if expected <= 0:
                continue
            fill = rate if expected > rate else expected
            self.channel.run("dd", f"if=/dev/zero of={file_path}{file_count} bs=1M count={fill}")
            file_count += 1

    def _burn_with_ram(
        self, ctx: Context, percent: int, reserve: int, rate: int, mode: str, include_buffer_cache: bool
    ) -> NoReturn:
        if rate <= 0:
            rate = DEFAULT_RATE
        held: list[bytearray] = []
        while True:
            time.sleep(1)
            expected = self._expected(ctx, percent, reserve, mode, include_buffer_cache)
            if expected <= 0:
                continue
            if expected > rate:
                fill = rate
            else:
                fill = expected // 10
                if fill == 0:
                    continue
            _log.debug("chunks: %d, expect mem: %d, fill size: %dM", len(held), expected, fill)
            held.append(bytearray(b"\x01") * (fill * _MB))


def mem_model_spec() -> ModelSpec:
    """The ``mem`` experiment model."""
    return ModelSpec(
        name="mem",
        short_desc="Mem experiment",
        long_desc="Mem experiment, for example load",
        example="mem load",
        actions=[
            ActionSpec(
                name="load",
                short_desc="mem load",
                long_desc="Create chaos engineering experiments with memory load",
                executor=MemExecutor(),
                example=_EXAMPLE,
                programs=[BURN_MEM_BIN],
                categories=[Category.SYSTEM_MEM],
                process_hang=True,
            )
        ],
        flags=[
            ExpFlag(name="mem-percent", desc="percent of burn Memory (0-100), must be a positive integer"),
            ExpFlag(
                name="reserve",
                desc="reserve to burn Memory, unit is MB. If the mem-percent flag exist, use mem-percent first.",
            ),
            ExpFlag(name="rate", desc="burn memory rate, unit is M/S, only support for ram mode."),
            ExpFlag(name="mode", desc="burn memory mode, cache or ram."),
            ExpFlag(
                name="include-buffer-cache", desc="Ram mode mem-percent is include buffer/cache", no_args=True
            ),
            ExpFlag(
                name="avoid-being-killed",
                desc="Prevent mem-burn process from being killed by oom-killer",
                no_args=True,
            ),
            ExpFlag(
                name="cgroup-root",
                desc="cgroup root path, default value /sys/fs/cgroup",
                default="/sys/fs/cgroup",
            ),
        ],
    )