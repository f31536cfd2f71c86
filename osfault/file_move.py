"""Moving a file to another directory and back."""

from __future__ import annotations

import posixpath
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

MOVE_FILE_BIN = "chaos_movefile"
BACKUP_SUFFIX = ".chaos-blade-backup"

_EXAMPLE = """
# Move the file /home/logs/nginx.log to /tmp
blade create file move --filepath /home/logs/nginx.log --target /tmp

# Force Move the file /home/logs/nginx.log to /temp
blade create file move --filepath /home/logs/nginx.log --target /tmp --force

# Move the file /home/logs/nginx.log to /temp/ and automatically create directories that don't exist
blade create file move --filepath /home/logs/nginx.log --target /temp --auto-create-dir
"""


def _base(filepath: str) -> str:
    if not filepath:
        return "."
    stripped = filepath.rstrip("/")
    return posixpath.basename(stripped) if stripped else "/"


def _join(*parts: str) -> str:
    return posixpath.normpath(posixpath.join(*parts))


def _parent(filepath: str) -> str:
    return posixpath.normpath(posixpath.dirname(filepath) or ".")


@dataclass
class FileMoveExecutor:
    """Moves a file into a target directory; destroy moves it back."""

    channel: Channel | None = None
    name: str = "chmod"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        require_commands(self.channel, ["mv", "mkdir"])
        flags = model.action_flags
        filepath = flags.get("filepath", "")
        target = flags.get("target", "")
        if ctx.destroy:
            return self._stop(filepath, target)

        if not filepath_exists(self.channel, target):
            raise ExperimentError(ErrorCode.PARAMETER_INVALID, "target", target, "the file does not exist")

        force = flags.get("force") == "true"
        auto_create_dir = flags.get("auto-create-dir") == "true"
        if not force:
            target_file = _join(target, _base(filepath))
            if filepath_exists(self.channel, target_file):
                raise ExperimentError(
                    ErrorCode.PARAMETER_INVALID, "target", target_file, "the target file does not exist"
                )
        return self._start(filepath, target, force, auto_create_dir)

    def _start(self, filepath: str, target: str, force: bool, auto_create_dir: bool) -> str:
        if auto_create_dir and not filepath_exists(self.channel, target):
            self.channel.run("mkdir", f"-p {target}")
        if not force:
            return self.channel.run("mv", f'"{filepath}" "{target}"')
        existing = _join(target, _base(filepath))
        try:
            self.channel.run("cp", f'"{existing}" "{_join(target, _base(filepath) + BACKUP_SUFFIX)}"')
        except CommandError:
            pass
        return self.channel.run("mv", f'-f "{filepath}" "{target}"')

    def _stop(self, filepath: str, target: str) -> str:
        origin = _join(target, _base(filepath))
        output = self.channel.run("mv", f'-f "{origin}" "{_parent(filepath)}"')
        backup = _join(target, _base(filepath) + BACKUP_SUFFIX)
        try:
            self.channel.run("mv", f'"{backup}" "{origin}"')
        except CommandError:
            pass
        return output


def file_move_action() -> ActionSpec:
    """The ``file move`` action."""
    return ActionSpec(
        name="move",
        short_desc="File move",
        long_desc="File move",
        executor=FileMoveExecutor(),
        matchers=file_matchers(),
        flags=[
            ExpFlag(name="target", desc="target folder", required=True),
            ExpFlag(name="force", desc="use --force flag overwrite target file", no_args=True),
            ExpFlag(
                name="auto-create-dir",
                desc="automatically creates a directory that does not exist",
                no_args=True,
            ),
        ],
        example=_EXAMPLE,
        programs=[MOVE_FILE_BIN],
        categories=[Category.SYSTEM_FILE],
    )