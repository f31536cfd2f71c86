"""The registry of experiment models and their executors."""

from __future__ import annotations

import sys
from typing import Any

from .cpu import cpu_model_spec
from .disk_fill import disk_model_spec
from .file_add import file_add_action
from .file_append import file_append_action
from .file_chmod import file_chmod_action
from .file_delete import file_delete_action
from .file_move import file_move_action
from .kernel import kernel_model_spec
from .mem import mem_model_spec
from .spec import ExpFlag, ModelSpec

UID_FLAG = ExpFlag(name="uid", desc="uid", default="")
DEBUG_FLAG = ExpFlag(name="debug", desc="debug", default="")
CHANNEL_FLAG = ExpFlag(name="channel", desc="channel", default="local")


def file_model_spec() -> ModelSpec:
    """The ``file`` experiment model."""
    return ModelSpec(
        name="file",
        short_desc="File experiment",
        long_desc="File experiment contains file content append, permission modification so on",
        actions=[
            file_append_action(),
            file_chmod_action(),
            file_add_action(),
            file_delete_action(),
            file_move_action(),
        ],
    )


def all_exp_models(platform: str | None = None) -> list[ModelSpec]:
    """Every experiment model available on ``platform`` (default: this one)."""
    platform = platform or sys.platform
    models = [cpu_model_spec(), mem_model_spec(), disk_model_spec(), file_model_spec()]
    if platform.startswith("linux"):
        return [*models, kernel_model_spec()]
    if platform == "darwin":
        return models
    raise ValueError(f"unsupported platform {platform!r}")


def executors_from_model(model_spec: ModelSpec) -> dict[str, Any]:
    """Map ``<model><action>`` to each action's executor."""
    return {model_spec.name + action.name: action.executor for action in model_spec.actions}


def all_executors(platform: str | None = None) -> dict[str, Any]:
    """The executors of every model available on ``platform``."""
    executors: dict[str, Any] = {}
    for model_spec in all_exp_models(platform):
        executors.update(executors_from_model(model_spec))
    return executors