"""Appending content to a file repeatedly."""

from __future__ import annotations

import base64
import binascii
import random
import re
import time
from dataclasses import dataclass
from typing import NoReturn

from .destroy import destroy, filepath_exists
from .spec import (
    ActionSpec,
    Category,
    Channel,
    Context,
    ErrorCode,
    ExperimentError,
    ExpFlag,
    ExpModel,
    file_matchers,
    require_commands,
)

APPEND_FILE_BIN = "chaos_appendfile"

_DATE = re.compile(r"\\?@\{(?s:DATE:([^(@{})]*[^\\]))\}")
_RANDOM = re.compile(r"\\?@\{(?s:RANDOM:([0-9]+-[0-9]+))\}")
_INTEGER = re.compile(r"[+-]?[0-9]+")

_EXAMPLE = """
# Appends the content "HELLO WORLD" to the /home/logs/nginx.log file
blade create file append --filepath=/home/logs/nginx.log --content="HELL WORLD"

# Appends the content "HELLO WORLD" to the /home/logs/nginx.log file, interval 10 seconds
blade create file append --filepath=/home/logs/nginx.log --content="HELL WORLD" --interval 10

# Appends the content "HELLO WORLD" to the /home/logs/nginx.log file, enable base64 encoding
blade create file append --filepath=/home/logs/nginx.log --content=SEVMTE8gV09STEQ=

# mock interface timeout exception
blade create file append --filepath=/home/logs/nginx.log --content="@{DATE:+%Y-%m-%d %H:%M:%S} ERROR invoke getUser timeout [@{RANDOM:100-200}]ms abc  mock exception"
"""


def parse_date(content: str) -> str:
    """Turn each ``@{DATE:format}`` into a shell ``date`` call; ``\\@{...}`` stays literal."""
    for match in _DATE.finditer(content):
        whole = match.group(0)
        if whole.startswith("\\@"):
            content = content.replace(whole, whole.replace("\\", "", 1), 1)
            continue
        content = content.replace(whole, f'$(date "{match.group(1)}")', 1)
    return content


def parse_random(content: str, rng: random.Random | None = None) -> str:
    """Replace each ``@{RANDOM:begin-end}`` with a number in ``[begin, end)``."""
    rng = rng or random.Random()
    for match in _RANDOM.finditer(content):
        whole = match.group(0)
        if whole.startswith("\\@"):
            content = content.replace(whole, whole.replace("\\", "", 1), 1)
            continue
        begin_text, end_text = match.group(1).split("-")
        begin, end = int(begin_text), int(end_text)
        if end <= begin:
            raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, "content", whole, "begin must < end")
        content = content.replace(whole, str(rng.randrange(end - begin) + begin), 1)
    return content


def append_file(
    channel: Channel,
    count: int,
    content: str,
    filepath: str,
    escape: bool,
    enable_base64: bool,
    rng: random.Random | None = None,
) -> str:
    """Append ``content`` to ``filepath`` ``count`` times and return the last output."""
    if enable_base64:
        try:
            content = base64.b64decode(content, validate=True).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError) as exc:
            raise ExperimentError(ErrorCode.OS_CMD_EXEC_FAILED, f"{content} base64 decode err") from exc
    content = parse_date(content)
    output = ""
    for _ in range(count):
        content = parse_random(content, rng)
        prefix = "-e " if escape else ""
        output = channel.run("echo", f"{prefix}'{content}' >> {filepath}")
    return output


def _positive(name: str, text: str) -> int:
    value = int(text) if _INTEGER.fullmatch(text) else 0
    if value < 1:
        raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, name, text, "it must be a positive integer")
    return value


@dataclass
class FileAppendExecutor:
    """Appends content to a file at a fixed interval until destroyed."""

    channel: Channel | None = None
    name: str = "append"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        require_commands(self.channel, ["echo", "kill"])
        flags = model.action_flags
        filepath = flags.get("filepath", "")
        if ctx.destroy:
            return destroy(self.channel, ctx, "file append", APPEND_FILE_BIN)

        if not filepath_exists(self.channel, filepath):
            raise ExperimentError(ErrorCode.PARAMETER_INVALID, "filepath", filepath, "the file does not exist")

        count_text = flags.get("count", "")
        interval_text = flags.get("interval", "")
        count = _positive("count", count_text) if count_text else 1
        interval = _positive("interval", interval_text) if interval_text else 1

        self._start(
            filepath,
            flags.get("content", ""),
            count,
            interval,
            flags.get("escape") == "true",
            flags.get("enable-base64") == "true",
        )

    def _start(
        self, filepath: str, content: str, count: int, interval: int, escape: bool, enable_base64: bool
    ) -> NoReturn:
        append_file(self.channel, count, content, filepath, escape, enable_base64)
        while True:
            time.sleep(interval)
            append_file(self.channel, count, content, filepath, escape, enable_base64)


def file_append_action() -> ActionSpec:
    """The ``file append`` action."""
    return ActionSpec(
        name="append",
        short_desc="File content append",
        long_desc="File content append. ",
        executor=FileAppendExecutor(),
        matchers=file_matchers(),
        flags=[
            ExpFlag(name="content", desc="append content", required=True),
            ExpFlag(name="count", desc="the number of append count, must be a positive integer, default 1"),
            ExpFlag(name="interval", desc="append interval, must be a positive integer, default 1s"),
            ExpFlag(name="escape", desc="symbols to escape, use --escape, at this --count is invalid", no_args=True),
            ExpFlag(name="enable-base64", desc="append content enable base64 encoding", no_args=True),
            ExpFlag(
                name="cgroup-root",
                desc="cgroup root path, default value /sys/fs/cgroup",
                default="/sys/fs/cgroup",
            ),
        ],
        example=_EXAMPLE,
        programs=[APPEND_FILE_BIN],
        categories=[Category.SYSTEM_FILE],
        process_hang=True,
    )