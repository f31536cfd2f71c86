"""Deleting a file, recoverably by default."""

from __future__ import annotations

import hashlib
import posixpath
from dataclasses import dataclass

from .destroy import filepath_exists
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

DELETE_FILE_BIN = "chaos_deletefile"

_EXAMPLE = """
# Delete the file /home/logs/nginx.log
blade create file delete --filepath /home/logs/nginx.log

# Force delete the file /home/logs/nginx.log unrecoverable
blade create file delete --filepath /home/logs/nginx.log --force
"""


def _base(filepath: str) -> str:
    if not filepath:
        return "."
    stripped = filepath.rstrip("/")
    return posixpath.basename(stripped) if stripped else "/"


def hidden_backup_path(filepath: str) -> str:
    """Where a recoverably deleted file is kept: a hidden, hashed name beside it."""
    digest = hashlib.md5(_base(filepath).encode("utf-8")).hexdigest()
    parent = posixpath.dirname(filepath) or "."
    return posixpath.normpath(posixpath.join(parent, "." + digest))


@dataclass
class FileDeleteExecutor:
    """Deletes a file; without ``force`` the file is hidden and restored on destroy."""

    channel: Channel | None = None
    name: str = "remove"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str | None:
        require_commands(self.channel, ["rm", "mv"])
        filepath = model.action_flags.get("filepath", "")
        force = model.action_flags.get("force") == "true"

        if ctx.destroy:
            if force:
                return None
            return self.channel.run("mv", f'"{hidden_backup_path(filepath)}" "{filepath}"')

        if not filepath_exists(self.channel, filepath):
            raise ExperimentError(ErrorCode.PARAMETER_INVALID, "filepath", filepath, "the file does not exist")

        if force:
            return self.channel.run("rm", f'-rf "{filepath}"')
        return self.channel.run("mv", f'"{filepath}" "{hidden_backup_path(filepath)}"')


def file_delete_action() -> ActionSpec:
    """The ``file delete`` action."""
    return ActionSpec(
        name="delete",
        short_desc="File delete",
        long_desc="File delete",
        executor=FileDeleteExecutor(),
        matchers=file_matchers(),
        flags=[ExpFlag(name="force", desc="use --force flag can't be restored", no_args=True)],
        example=_EXAMPLE,
        programs=[DELETE_FILE_BIN],
        categories=[Category.SYSTEM_FILE],
    )