"""Changing the permissions of a file and restoring them."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .destroy import filepath_exists
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
    file_matchers,
    require_commands,
)

CHMOD_FILE_BIN = "chaos_chmodfile"
TMP_FILE_CHMOD = "/tmp/chaos-file-chmod.tmp"

_log = logging.getLogger(__name__)
_MARK = re.compile(r"[0-7]{3}")

_EXAMPLE = """
# Modify /home/logs/nginx.log file permissions to 777
blade create file chmod --filepath /home/logs/nginx.log --mark=777
"""


@dataclass
class FileChmodExecutor:
    """Sets a file's mode, recording the original mode so destroy can restore it."""

    channel: Channel | None = None
    name: str = "chmod"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        require_commands(self.channel, ["chmod", "grep", "echo", "rm", "awk", "cat", "stat"])
        mark = model.action_flags.get("mark", "")
        if not _MARK.fullmatch(mark):
            raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, "mark", mark, "the mark is not matched")

        filepath = model.action_flags.get("filepath", "")
        if ctx.destroy:
            return self._stop(filepath)

        if not filepath_exists(self.channel, filepath):
            raise ExperimentError(ErrorCode.PARAMETER_INVALID, "filepath", filepath, "the file does not exist")

        try:
            self.channel.run("grep", f'-q "{filepath}:" "{TMP_FILE_CHMOD}"')
        except CommandError:
            pass
        else:
            raise ExperimentError(ErrorCode.PARAMETER_ILLEGAL, "filepath", filepath, "already being experimented")

        try:
            origin_mark = self.channel.run("stat", f'-c "%a" {filepath}')
        except CommandError as exc:
            raise ExperimentError(
                ErrorCode.PARAMETER_ILLEGAL, "filepath", filepath, "can't get file's mark"
            ) from exc

        self.channel.run("echo", f"'{filepath}:{origin_mark}' >> {TMP_FILE_CHMOD}")
        return self.channel.run("chmod", f'{mark} "{filepath}"')

    def _stop(self, filepath: str) -> str:
        try:
            origin_mark = self.channel.run("grep", f"{filepath}: {TMP_FILE_CHMOD} | awk -F ':' '{{printf $2}}'")
            return self.channel.run("chmod", f"{origin_mark} {filepath}")
        finally:
            self._clear_temp_file(filepath)

    def _clear_temp_file(self, filepath: str) -> None:
        try:
            remaining = self.channel.run("cat", f'"{TMP_FILE_CHMOD}"| grep -v {filepath}:')
        except CommandError:
            try:
                self.channel.run("rm", f'-rf "{TMP_FILE_CHMOD}"')
            except CommandError as exc:
                _log.error("clean temp file error %s", exc)
            return
        try:
            self.channel.run("echo", f'"{remaining.rstrip(chr(10))}" > {TMP_FILE_CHMOD}')
        except CommandError as exc:
            _log.error("clean temp file error %s", exc)


def file_chmod_action() -> ActionSpec:
    """The ``file chmod`` action."""
    return ActionSpec(
        name="chmod",
        short_desc="File permission modification.",
        long_desc="File permission modification.",
        executor=FileChmodExecutor(),
        matchers=file_matchers(),
        flags=[ExpFlag(name="mark", desc="--mark 777", required=True)],
        example=_EXAMPLE,
        programs=[CHMOD_FILE_BIN],
        categories=[Category.SYSTEM_FILE],
    )