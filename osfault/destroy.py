"""Stopping long-running experiments and probing the target filesystem."""

from __future__ import annotations

from .spec import UNKNOWN_UID, Channel, CommandError, Context, ErrorCode, ExperimentError

CHAOS_OS_PROGRAM = "chaos_os"


def destroy(channel: Channel, ctx: Context, action: str, program: str | None = None) -> str:
    """Kill the processes that keep an experiment running.

    Processes are matched by the experiment uid when one is known, otherwise
    by the action name. ``program`` names an older helper binary whose
    processes are killed too.
    """
    uid = ctx.uid
    process_key = uid if uid and uid != UNKNOWN_UID else action

    program_pids = channel.get_pids_by_process_name(program, process_key) if program else []
    pids = list(channel.get_pids_by_process_name(CHAOS_OS_PROGRAM, process_key)) + list(program_pids)
    if not pids:
        raise ExperimentError(
            ErrorCode.OS_CMD_EXEC_FAILED,
            "destroy experiment failed, cannot get the chaos_os program",
        )
    return channel.run("kill", "-9 " + " ".join(pids))


def filepath_exists(channel: Channel, filepath: str) -> bool:
    """Tell whether ``filepath`` exists where the channel runs."""
    try:
        output = channel.run(f"[ -e {filepath} ] && echo true || echo false", "")
    except CommandError:
        return False
    return "true" in output