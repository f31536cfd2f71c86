"""Filling a directory's filesystem up to a size, a percentage or a reserve."""

from __future__ import annotations

import logging
import math
import os
import posixpath
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, NoReturn

from .destroy import filepath_exists
from .disk_burn import disk_burn_action
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
    require_commands,
)

FILL_DISK_BIN = "chaos_filldisk"
FILL_DATA_FILE = "chaos_filldisk.log.dat"
DISK_FILL_ERROR_MESSAGE = "No space left on device"
_MB = 1024.0 * 1024.0

_log = logging.getLogger(__name__)
_INTEGER = re.compile(r"[+-]?[0-9]+")

_EXAMPLE = """
# Perform a disk fill of 40G to achieve a full disk (34G available)
blade create disk fill --path /home --size 40000

# Performs populating the disk by percentage, and retains the file handle that populates the disk
Command: "blade c disk fill --path /home --percent 80 --retain-handle

# Perform a fixed-size experimental scenario
blade c disk fill --path /home --reserve 1024"""

StatFs = Callable[[str], Any]


def _data_file(directory: str) -> str:
    return posixpath.normpath(posixpath.join(directory, FILL_DATA_FILE))


def calculate_file_size(
    directory: str,
    size: str,
    percent: str,
    reserve: str,
    statfs: StatFs | None = None,
) -> str:
    """The number of megabytes to fill, as text.

    ``percent`` takes priority over ``reserve``; with neither, ``size`` is
    returned unchanged. ``statfs`` returns an object with ``f_blocks``,
    ``f_bavail`` and ``f_frsize`` for a directory; it defaults to ``os.statvfs``.
    Raises ValueError when the target cannot be reached.
    """
    if not percent and not reserve:
        return size
    stat = (statfs or os.statvfs)(directory)
    all_bytes = stat.f_blocks * stat.f_frsize
    available_bytes = stat.f_bavail * stat.f_frsize
    used_bytes = all_bytes - available_bytes

    if percent:
        if not _INTEGER.fullmatch(percent):
            raise ValueError(f"illegal percent {percent!r}")
        if all_bytes == 0:
            raise ValueError(f"the filesystem of {directory} has no blocks")
        used_percentage = float(f"{used_bytes / all_bytes:.2f}")
        expected_percentage = float(f"{int(percent) / 100.0:.2f}")
        if used_percentage >= expected_percentage:
            raise ValueError(f"the disk has been used {used_percentage:.2f}, large than expected")
        remainder = expected_percentage - used_percentage
        _log.debug("remainderPercentage: %f", remainder)
        return str(math.floor(remainder * all_bytes / _MB))

    try:
        reserved = float(reserve)
    except ValueError as exc:
        raise ValueError(f"illegal reserve {reserve!r}") from exc
    available_mb = available_bytes / _MB
    if available_mb <= reserved:
        raise ValueError(f"the disk has available size {available_mb:.2f}, less than expected")
    return str(math.floor(available_mb - reserved))


def _kill_by_name(channel: Channel, name: str, label: str) -> None:
    pids = channel.get_pids_by_process_name(name, "")
    if not pids:
        return
    try:
        channel.run("kill", "-9 " + " ".join(pids))
    except CommandError as exc:
        _log.error("kill %s process err: %s", label, exc)


def stop_fill(channel: Channel, ctx: Context, directory: str) -> str:
    """Kill the fill processes and remove the fill file under ``directory``."""
    if not directory:
        raise ExperimentError(ErrorCode.PARAMETER_INVALID, "directory", directory, "directory is nil")
    _kill_by_name(channel, FILL_DATA_FILE, "fallocate")
    _kill_by_name(channel, "disk fill", "disk fill daemon")
    data_file = _data_file(directory)
    if filepath_exists(channel, data_file):
        return channel.run("rm", f"-rf {data_file}")
    return ""


def _fill_by_fallocate(channel: Channel, size: str, data_file: str) -> str:
    try:
        return channel.run("fallocate", f"-l {size}M {data_file}")
    except CommandError as exc:
        if DISK_FILL_ERROR_MESSAGE in exc.stderr:
            return f"success because of {DISK_FILL_ERROR_MESSAGE}"
        _log.warning("execute fallocate err, %s", exc.stderr)
        raise ExperimentError(ErrorCode.OS_CMD_EXEC_FAILED, f"fallocate {exc.stderr}") from exc


def _fill_by_dd(channel: Channel, data_file: str, size: str) -> str:
    if not channel.is_command_available("dd"):
        raise ExperimentError(ErrorCode.COMMAND_DD_NOT_FOUND)
    # dd fills slowly, so a one-block write checks the command first.
    channel.run("dd", f"if=/dev/zero of={data_file} bs=1b count=1 iflag=fullblock")
    return channel.run(
        "nohup",
        f"dd if=/dev/zero of={data_file} bs=1M count={size} iflag=fullblock >/dev/null 2>&1 &",
    )


def _fill(channel: Channel, size: str, data_file: str) -> str:
    if channel.is_command_available("fallocate"):
        try:
            return _fill_by_fallocate(channel, size, data_file)
        except ExperimentError:
            pass
    return _fill_by_dd(channel, data_file, size)


def _retain_file_handle(data_file: str) -> NoReturn:
    try:
        handle = open(data_file, "rb")
    except OSError as exc:
        raise ExperimentError(
            ErrorCode.OS_CMD_EXEC_FAILED, f"failed to read {data_file} file, {exc}"
        ) from exc
    with handle:
        while True:
            time.sleep(3600)


def _start_fill(
    channel: Channel,
    ctx: Context,
    directory: str,
    size: str,
    percent: str,
    reserve: str,
    retain_handle: bool,
    statfs: StatFs | None,
) -> str:
    if not directory:
        raise ExperimentError(ErrorCode.PARAMETER_INVALID, "directory", directory, "directory is nil")
    if not (size or percent or reserve):
        raise ExperimentError(
            ErrorCode.PARAMETER_INVALID, "directory", directory, "less --size or --percent or --reserve flag"
        )
    data_file = _data_file(directory)
    try:
        size = calculate_file_size(directory, size, percent, reserve, statfs)
    except (ValueError, OSError) as exc:
        raise ExperimentError(ErrorCode.OS_CMD_EXEC_FAILED, f"calculate size err, {exc}") from exc

    try:
        output = _fill(channel, size, data_file)
    except ExperimentError as exc:
        try:
            stop_fill(channel, ctx, directory)
        except ExperimentError as stop_exc:
            _log.warning("failed to stop fill when starting failed, %s, starting err: %s", stop_exc, exc)
        raise
    if retain_handle:
        _retain_file_handle(data_file)
    return output


def _check_integer(name: str, text: str) -> None:
    if not _INTEGER.fullmatch(text):
        raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, name, text, "it must be positive integer")


@dataclass
class DiskFillExecutor:
    """Fills the filesystem of a directory; destroy removes the fill file."""

    channel: Channel | None = None
    name: str = "fill"
    statfs: StatFs | None = None

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        require_commands(self.channel, [])
        flags = model.action_flags
        directory = flags.get("path", "") or "/"
        if not os.path.isdir(directory):
            raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, "path", directory, "it must be a directory")
        if ctx.destroy:
            return stop_fill(self.channel, ctx, directory)

        retain_handle = flags.get("retain-handle") == "true"
        percent = flags.get("percent", "")
        reserve = flags.get("reserve", "")
        size = flags.get("size", "")
        if percent:
            _check_integer("percent", percent)
            size, reserve = "", ""
        elif reserve:
            _check_integer("reserve", reserve)
            size = ""
        elif size:
            _check_integer("size", size)
        else:
            raise ExperimentError(ErrorCode.PARAMETER_LESS, "size|percent")
        return _start_fill(self.channel, ctx, directory, size, percent, reserve, retain_handle, self.statfs)


def disk_fill_action() -> ActionSpec:
    """The ``disk fill`` action."""
    return ActionSpec(
        name="fill",
        short_desc="Fill the specified directory path",
        long_desc=(
            "Fill the specified directory path. If the path is not directory or does not exist, "
            "an error message will be returned."
        ),
        executor=DiskFillExecutor(),
        matchers=[
            ExpFlag(name="path", desc="The path of directory where the disk is populated, default value is /"),
        ],
        flags=[
            ExpFlag(
                name="size",
                desc=(
                    "Disk fill size, unit is MB. The value is a positive integer without unit, "
                    "for example, --size 1024"
                ),
            ),
            ExpFlag(
                name="percent",
                desc=(
                    "Total percentage of disk occupied by the specified path. If size and the flag exist, "
                    "use this flag first. The value must be positive integer without %"
                ),
            ),
            ExpFlag(
                name="reserve",
                desc=(
                    "Disk reserve size, unit is MB. The value is a positive integer without unit. If size, "
                    "percent and reserve flags exist, the priority is as follows: percent > reserve > size"
                ),
            ),
            ExpFlag(
                name="retain-handle",
                desc="Whether to retain the big file handle, default value is false.",
                no_args=True,
            ),
        ],
        example=_EXAMPLE,
        programs=[FILL_DISK_BIN],
        categories=[Category.SYSTEM_DISK],
    )


def disk_model_spec() -> ModelSpec:
    """The ``disk`` experiment model."""
    return ModelSpec(
        name="disk",
        short_desc="Disk experiment",
        long_desc="Disk experiment contains fill disk or burn io",
        actions=[disk_fill_action(), disk_burn_action()],
    )