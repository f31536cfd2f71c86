"""Raising disk read and write IO load."""

from __future__ import annotations

import logging
import os
import posixpath
import threading
from dataclasses import dataclass

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
    require_commands,
)

BURN_IO_BIN = "chaos_burnio"
READ_FILE = "chaos_burnio.read"
WRITE_FILE = "chaos_burnio.write"
COUNT = 100
READ_FILE_SIZE_MB = 6

_log = logging.getLogger(__name__)

_EXAMPLE = """
# The data of rkB/s, wkB/s and % Util were mainly observed. Perform disk read IO high-load scenarios
blade create disk burn --read --path /home

# Perform disk write IO high-load scenarios
blade create disk burn --write --path /home

# Read and write IO load scenarios are performed at the same time. Path is not specified. The default is /
blade create disk burn --read --write"""


def dd_arg_templates(os_release: str | None) -> tuple[str, str, str]:
    """The dd argument templates for creating, reading and writing, chosen by the OS release text.

    Each template takes the file path, the block size in MB and the block count.
    """
    create = "if=/dev/zero of={} bs={}M count={} oflag=dsync"
    read = "if={} of=/dev/null bs={}M count={} iflag=dsync,direct,fullblock"
    write = "if=/dev/zero of={} bs={}M count={} oflag=dsync"
    if os_release is not None and "ID=ALPINE" in os_release.upper():
        create = "if=/dev/zero of={} bs={}M count={} oflag=append"
        read = "if={} of=/dev/null bs={}M count={} iflag=fullblock oflag=append"
        write = "if=/dev/zero of={} bs={}M count={} oflag=append"
    return create, read, write


def _templates(channel: Channel) -> tuple[str, str, str]:
    try:
        os_release = channel.run("cat", "/etc/os-release")
    except CommandError as exc:
        _log.warning("cat /etc/os-release failed, %s. use the default value.", exc)
        return dd_arg_templates(None)
    return dd_arg_templates(os_release)


def _burn_write(channel: Channel, directory: str, size: str) -> None:
    target = posixpath.join(directory, WRITE_FILE)
    _, _, write = _templates(channel)
    while True:
        try:
            channel.run("dd", write.format(target, size, COUNT))
        except CommandError as exc:
            _log.error("disk burn write, run dd err: %s", exc)
            break


def _burn_read(channel: Channel, directory: str, size: str) -> None:
    target = posixpath.join(directory, READ_FILE)
    create, read, _ = _templates(channel)
    try:
        channel.run("dd", create.format(target, READ_FILE_SIZE_MB, COUNT))
    except CommandError as exc:
        _log.error("disk burn read, run dd err: %s", exc)
    while True:
        try:
            channel.run("dd", read.format(target, size, COUNT))
        except CommandError as exc:
            _log.error("disk burn read, run dd err: %s", exc)
            break


@dataclass
class DiskBurnExecutor:
    """Keeps dd reading and writing under a directory; destroy removes the files and stops it."""

    channel: Channel | None = None
    name: str = "burn"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        require_commands(self.channel, ["rm", "dd"])
        flags = model.action_flags
        directory = flags.get("path", "") or "/"
        read = flags.get("read") == "true"
        write = flags.get("write") == "true"

        if ctx.destroy:
            if not (read or write):
                read = write = True
            return self._stop(ctx, read, write, directory)

        if not os.path.isdir(directory):
            raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, "path", directory, "it must be a directory")
        if not (read or write):
            raise ExperimentError(ErrorCode.PARAMETER_LESS, "read|write")
        size = flags.get("size", "") or "10"
        self._start(read, write, directory, size)

    def _start(self, read: bool, write: bool, directory: str, size: str) -> None:
        workers = []
        if read:
            workers.append(threading.Thread(target=_burn_read, args=(self.channel, directory, size), daemon=True))
        if write:
            workers.append(threading.Thread(target=_burn_write, args=(self.channel, directory, size), daemon=True))
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
        raise ExperimentError(ErrorCode.OS_CMD_EXEC_FAILED, "disk burn stopped, run dd failed")

    def _stop(self, ctx: Context, read: bool, write: bool, directory: str) -> str:
        for enabled, filename, label in ((read, READ_FILE, "read"), (write, WRITE_FILE, "write")):
            if not enabled:
                continue
            try:
                self.channel.run("rm", f"-rf {posixpath.join(directory, filename)}*")
            except CommandError as exc:
                _log.error("clean %s file: %s", label, exc)
        return destroy(self.channel, ctx, "disk burn", BURN_IO_BIN)


def disk_burn_action() -> ActionSpec:
    """The ``disk burn`` action."""
    return ActionSpec(
        name="burn",
        short_desc="Increase disk read and write io load",
        long_desc="Increase disk read and write io load",
        executor=DiskBurnExecutor(),
        matchers=[
            ExpFlag(
                name="read",
                desc="Burn io by read, it will create a 600M for reading and delete it when destroy it",
                no_args=True,
            ),
            ExpFlag(
                name="write",
                desc=(
                    "Burn io by write, it will create a file by value of the size flag, for example the size "
                    "default value is 10, then it will create a 10M*100=1000M file for writing, and delete it "
                    "when destroy"
                ),
                no_args=True,
            ),
            ExpFlag(
                name="cgroup-root",
                desc="cgroup root path, default value /sys/fs/cgroup",
                default="/sys/fs/cgroup",
            ),
        ],
        flags=[
            ExpFlag(name="size", desc="Block size, MB, default is 10"),
            ExpFlag(name="path", desc="The path of directory where the disk is burning, default value is /"),
        ],
        example=_EXAMPLE,
        programs=[BURN_IO_BIN],
        categories=[Category.SYSTEM_DISK],
        process_hang=True,
    )