"""Adding a file or directory."""

from __future__ import annotations

import base64
import binascii
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

ADD_FILE_BIN = "chaos_addfile"

_EXAMPLE = """
# Create a file named nginx.log in the /home directory
blade create file add --filepath /home/nginx.log

# Create a file named nginx.log in the /home directory with the contents of HELLO WORLD
blade create file add --filepath /home/nginx.log --content "HELLO WORLD"

# Create a file named nginx.log in the /temp directory and automatically create directories that don't exist
blade create file add --filepath /temp/nginx.log --auto-create-dir

# Create a directory named /nginx in the /temp directory and automatically create directories that don't exist
blade create file add --directory --filepath /temp/nginx --auto-create-dir
"""


@dataclass
class FileAddExecutor:
    """Creates a file or directory, and removes it again on destroy."""

    channel: Channel | None = None
    name: str = "add"

    def exec(self, uid: str, ctx: Context, model: ExpModel) -> str:
        require_commands(self.channel, ["touch", "mkdir", "echo", "rm"])
        flags = model.action_flags
        filepath = flags.get("filepath", "")
        if ctx.destroy:
            return self.channel.run("rm", f"-rf {filepath}")

        if filepath_exists(self.channel, filepath):
            raise ExperimentError(ErrorCode.PARAMETER_INVALID, "filepath", filepath, "the filepath is exist")

        return self._start(
            filepath,
            flags.get("content", ""),
            directory=flags.get("directory") == "true",
            enable_base64=flags.get("enable-base64") == "true",
            auto_create_dir=flags.get("auto-create-dir") == "true",
        )

    def _start(
        self,
        filepath: str,
        content: str,
        *,
        directory: bool,
        enable_base64: bool,
        auto_create_dir: bool,
    ) -> str:
        parent = posixpath.dirname(filepath) or "."
        if auto_create_dir and not filepath_exists(self.channel, filepath):
            self.channel.run("mkdir", f"-p {parent}")
        if directory:
            return self.channel.run("mkdir", filepath)
        if not content:
            return self.channel.run("touch", filepath)
        if enable_base64:
            try:
                content = base64.b64decode(content, validate=True).decode("utf-8", errors="replace")
            except (binascii.Error, ValueError) as exc:
                raise ExperimentError(
                    ErrorCode.PARAMETER_INVALID, "content", content, "it must be base64 encoded"
                ) from exc
        return self.channel.run("echo", f'"{content}" >> "{filepath}"')


def file_add_action() -> ActionSpec:
    """The ``file add`` action."""
    return ActionSpec(
        name="add",
        short_desc="File or path add",
        long_desc="File or path add",
        executor=FileAddExecutor(),
        matchers=file_matchers(),
        flags=[
            ExpFlag(name="directory", desc="use --directory flag, --filepath is directory", no_args=True),
            ExpFlag(name="content", desc="--content, add file content"),
            ExpFlag(name="enable-base64", desc="--content use base64 encoding", no_args=True),
            ExpFlag(
                name="auto-create-dir",
                desc="automatically creates a directory that does not exist",
                no_args=True,
            ),
        ],
        example=_EXAMPLE,
        programs=[ADD_FILE_BIN],
        categories=[Category.SYSTEM_FILE],
    )