"""Loading the CPU to a chosen percentage."""

from __future__ import annotations

import dataclasses
import logging
import multiprocessing
import os
import queue
import re
import sys
import threading
import time
from dataclasses import dataclass
from typing import NoReturn

import psutil

from .cgroup import DEFAULT_CGROUP_ROOT, CgroupError, cpu_usage_total
from .destroy import destroy
from .spec import (
    ActionSpec,
    Category,
    Channel,
    CommandError,
    Context,
    ErrorCode,
    ExperimentError,
    ExpFlag,
    ExpModel,
    ModelSpec,
    parse_integer_list,
)

BURN_CPU_BIN = "chaos_burncpu"
PERIOD = 1_000_000_000
MAX_CLIMB_TIME = 600

_log = logging.getLogger(__name__)
_INTEGER = re.compile(r"[+-]?[0-9]+")

_EXAMPLE = """
# Create a CPU full load experiment
blade create cpu load

#Specifies two random core's full load
blade create cpu load --cpu-percent 60 --cpu-count 2

# Specifies that the core is full load with index 0, 3, and that the core's index starts at 0
blade create cpu load --cpu-list 0,3

# Specify the core full load of indexes 1-3
blade create cpu load --cpu-list 1-3

# Specified percentage load
blade create cpu load --cpu-percent 60"""


def _parse_int(name: str, text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, name, text, "it must be a positive integer")
    return int(text)


def cpu_usage(ctx: Context, percpu: bool, cpu_index: int, cpu_count: int) -> float:
    """Measure CPU usage in percent over one second.

    With a target pid the usage of its cgroup is measured, spread over
    ``cpu_count`` cores; otherwise the host usage, or that of one core.
    """
    if ctx.target_pid is not None:
        if not _INTEGER.fullmatch(ctx.target_pid):
            raise ExperimentError(
                ErrorCode.OS_CMD_EXEC_FAILED, f"get cpu usage fail, illegal pid {ctx.target_pid!r}"
            )
        pid = int(ctx.target_pid)
        root = ctx.cgroup_root or DEFAULT_CGROUP_ROOT
        _log.debug("get cpu usage by cgroup, root path: %s", root)
        try:
            before = cpu_usage_total(root, pid) / 1e9
            time.sleep(1)
            after = cpu_usage_total(root, pid) / 1e9
        except (CgroupError, OSError) as exc:
            raise ExperimentError(ErrorCode.OS_CMD_EXEC_FAILED, f"get cpu usage fail, {exc}") from exc
        return (after - before) * 100 / cpu_count

    try:
        percents = psutil.cpu_percent(interval=1, percpu=percpu)
    except (OSError, psutil.Error) as exc:
        raise ExperimentError(ErrorCode.OS_CMD_EXEC_FAILED, f"get cpu usage fail, {exc}") from exc
    if percpu:
        if not 0 <= cpu_index < len(percents):
            raise ExperimentError(
                ErrorCode.PARAMETER_ILLEGAL, "cpu-index", cpu_index, f"illegal cpu index {cpu_index}"
            )
        return float(percents[cpu_index])
    return float(percents)


def compute_quota(slope_percent: float, used: float) -> int:
    """Nanoseconds of extra busy time per period needed to move usage to the target."""
    return int((slope_percent - used) / 100 * PERIOD)


def climb_step(current: float, target: float, start_delta: float, climb_time: int) -> float:
    """The target percentage one second further into a climb."""
    if current < target:
        return current + start_delta / climb_time
    if current > target:
        return current - start_delta / climb_time
    return current


def taskset_commands(
    program: str, cores: list[str], cpu_percent: int, climb_time: int, uid: str
) -> list[tuple[str, str]]:
    """Commands that start one single-core load pinned to each of ``cores``."""
    return [
        (
            "taskset",
            f"-c {core} {program} create cpu fullload --cpu-count 1 --cpu-percent {cpu_percent}"
            f" --climb-time {climb_time} --cpu-index {core} --uid {uid}",
        )
        for core in cores
    ]


class _Slope:
    """The target percentage, shared between the climbing thread and the controller."""

    def __init__(self, value: float) -> None:
        self.value = value


def _climb(slope: _Slope, target: float, start_delta: float, climb_time: int) -> None:
    while True:
        time.sleep(1)
        slope.value = climb_step(slope.value, target, start_delta, climb_time)


def _burn_worker(quotas: multiprocessing.Queue, quota: int) -> None:
    sleep_seconds = max(PERIOD - quota, 0) / 1e9
    while True:
        start = time.monotonic_ns()
        try:
            offset = quotas.get_nowait()
        except queue.Empty:
            while time.monotonic_ns() - start < quota:
                pass
            time.sleep(sleep_seconds)
        else:
            quota = max(quota + offset, 0)
            sleep_seconds = max(PERIOD - quota, 0) / 1e9


@dataclass
class CpuExecutor:
    """Loads the CPU; on destroy, stops the running load."""

    channel: Channel | None = None
    name: str = "cpu"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        if self.channel is None:
            raise ExperimentError(ErrorCode.CHANNEL_NIL)
        if ctx.destroy:
            return destroy(self.channel, ctx, "cpu fullload", BURN_CPU_BIN)

        flags = model.action_flags
        cpu_percent = 100
        percent_text = flags.get("cpu-percent", "")
        if percent_text:
            cpu_percent = _parse_int("cpu-percent", percent_text)
            if not 0 <= cpu_percent <= 100:
                raise ExperimentError(
                    ErrorCode.PARAMETER_ILLEGAL,
                    "cpu-percent",
                    percent_text,
                    "it must be a positive integer and not bigger than 100",
                )

        cores: list[str] = []
        cpu_count = 0
        list_text = flags.get("cpu-list", "")
        if list_text:
            if not self.channel.is_command_available("taskset"):
                raise ExperimentError(ErrorCode.COMMAND_TASKSET_NOT_FOUND)
            try:
                cores = parse_integer_list("cpu-list", list_text)
            except ValueError as exc:
                raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, "cpu-list", list_text, exc) from exc
        else:
            count_text = flags.get("cpu-count", "")
            if count_text:
                cpu_count = _parse_int("cpu-count", count_text)
            available = os.cpu_count() or 1
            if cpu_count <= 0 or cpu_count > available:
                cpu_count = available

        climb_time = 0
        climb_text = flags.get("climb-time", "")
        if climb_text:
            climb_time = _parse_int("climb-time", climb_text)
            if not 0 <= climb_time <= MAX_CLIMB_TIME:
                raise ExperimentError(
                    ErrorCode.PARAMETER_ILLEGAL,
                    "climb-time",
                    climb_text,
                    "must be a positive integer and not bigger than 600",
                )

        ctx = dataclasses.replace(ctx, cgroup_root=flags.get("cgroup-root", ""))
        if cores:
            return self._start_pinned(ctx, cores, cpu_percent, climb_time)
        self._burn(ctx, cpu_count, cpu_percent, climb_time, flags.get("cpu-index", ""))

    def _start_pinned(self, ctx: Context, cores: list[str], cpu_percent: int, climb_time: int) -> str:
        for command, args in taskset_commands(sys.argv[0], cores, cpu_percent, climb_time, ctx.uid):
            try:
                self.channel.run(command, args)
            except CommandError as exc:
                raise ExperimentError(ErrorCode.OS_CMD_EXEC_FAILED, f"taskset exec failed, {exc}") from exc
        return ctx.uid

    def _burn(
        self, ctx: Context, cpu_count: int, cpu_percent: int, climb_time: int, cpu_index_text: str
    ) -> NoReturn:
        percpu = bool(cpu_index_text)
        cpu_index = _parse_int("cpu-index", cpu_index_text) if percpu else 0
        _log.debug("cpu counts: %d", cpu_count)

        slope = _Slope(float(cpu_percent))
        if climb_time:
            slope.value = cpu_usage(ctx, percpu, cpu_index, cpu_count)
            start_delta = cpu_percent - slope.value
            threading.Thread(
                target=_climb, args=(slope, float(cpu_percent), start_delta, climb_time), daemon=True
            ).start()

        quotas: multiprocessing.Queue = multiprocessing.Queue(maxsize=cpu_count)
        initial = compute_quota(slope.value, cpu_usage(ctx, percpu, cpu_index, cpu_count))
        for _ in range(cpu_count):
            multiprocessing.Process(target=_burn_worker, args=(quotas, initial), daemon=True).start()

        while True:
            used = cpu_usage(ctx, percpu, cpu_index, cpu_count)
            _log.debug("cpu usage: %f, percpu: %s, cpu index: %d", used, percpu, cpu_index)
            quota = compute_quota(slope.value, used)
            for _ in range(cpu_count):
                quotas.put(quota)


def cpu_model_spec() -> ModelSpec:
    """The ``cpu`` experiment model."""
    return ModelSpec(
        name="cpu",
        short_desc="Cpu experiment",
        long_desc="Cpu experiment, for example full load",
        actions=[
            ActionSpec(
                name="fullload",
                aliases=["fl", "load"],
                short_desc="cpu load",
                long_desc="Create chaos engineering experiments with CPU load",
                executor=CpuExecutor(),
                example=_EXAMPLE,
                programs=[BURN_CPU_BIN],
                categories=[Category.SYSTEM_CPU],
                process_hang=True,
            )
        ],
        flags=[
            ExpFlag(name="cpu-count", desc="Cpu count"),
            ExpFlag(name="cpu-list", desc="CPUs in which to allow burning (0-3 or 1,3)"),
            ExpFlag(name="cpu-percent", desc="percent of burn CPU (0-100)"),
            ExpFlag(name="cpu-index", desc="cpu index, user unavailable!"),
            ExpFlag(name="climb-time", desc="durations(s) to climb"),
            ExpFlag(
                name="cgroup-root",
                desc="cgroup root path, default value /sys/fs/cgroup",
                default="/sys/fs/cgroup",
            ),
        ],
    )