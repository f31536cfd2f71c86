import posixpath

import pytest

from osfault.kernel import (
    STRACE_DELAY_BIN,
    StraceDelayExecutor,
    StraceErrorExecutor,
    delay_args,
    error_args,
    kernel_model_spec,
    strace_delay_action,
    strace_error_action,
)
from osfault.spec import Channel, Context, ErrorCode, ExperimentError, ExpModel


class FakeChannel(Channel):
    def __init__(self, pids=None):
        self.pids = pids or {}
        self.runs = []
        self.lookups = []

    def run(self, command, args):
        self.runs.append((command, args))
        return "ok"

    def is_command_available(self, command):
        return True

    def get_pids_by_process_name(self, name, process_key):
        self.lookups.append((name, process_key))
        return list(self.pids.get(name, []))


def _delay_model(**overrides):
    flags = {"pid": "1", "time": "10s", "syscall-name": "mmap", "delay-loc": "enter", "first": "1"}
    flags.update(overrides)
    return ExpModel(target="strace", action_name="delay", action_flags=flags)


def _error_model(**overrides):
    flags = {"pid": "1", "return-value": "ENOENT", "syscall-name": "open"}
    flags.update(overrides)
    return ExpModel(target="strace", action_name="error", action_flags=flags)


def test_delay_args_enter_with_first():
    assert delay_args(["1"], "mmap", "10s", "enter", "1", "", "") == (
        "-p 1 -f -e inject=mmap:delay_enter=10s:when=1"
    )


def test_error_args_basic():
    assert error_args(["7"], "open", "ENOENT", "", "", "") == "-p 7 -f -e inject=open:error=ENOENT"


def test_delay_args_exit_uses_delay_exit():
    args = delay_args(["1"], "mmap", "10s", "exit", "", "", "")
    assert "delay_exit=10s" in args
    assert "delay_enter" not in args


def test_unknown_delay_location_injects_nothing():
    assert "inject" not in delay_args(["1"], "mmap", "1s", "middle", "", "", "")


def test_pids_are_prepended_last_first():
    args = delay_args(["1", "2"], "mmap", "1s", "enter", "", "", "")
    assert args.startswith("-p 2 -p 1 ")


def test_step_and_end_extend_when_clause():
    base = error_args(["1"], "open", "EIO", "1", "", "")
    assert error_args(["1"], "open", "EIO", "1", "", "3") == base + "+3"
    assert error_args(["1"], "open", "EIO", "1", "5", "") == base + "..5"
    assert error_args(["1"], "open", "EIO", "1", "5", "3") == base + "..5+3"


def test_end_and_step_ignored_without_first():
    assert delay_args(["1"], "mmap", "1s", "enter", "", "5", "2") == delay_args(
        ["1"], "mmap", "1s", "enter", "", "", ""
    )


def test_delay_exec_runs_strace():
    channel = FakeChannel()
    StraceDelayExecutor(channel=channel).exec("uid", Context(uid="uid"), _delay_model())
    assert len(channel.runs) == 1
    command, args = channel.runs[0]
    assert posixpath.basename(command) == "strace"
    assert args == delay_args(["1"], "mmap", "10s", "enter", "1", "", "")


def test_delay_exec_expands_pid_list():
    channel = FakeChannel()
    StraceDelayExecutor(channel=channel).exec("uid", Context(), _delay_model(pid="3-4"))
    assert channel.runs[0][1] == delay_args(["3", "4"], "mmap", "10s", "enter", "1", "", "")


def test_error_exec_runs_strace():
    channel = FakeChannel()
    StraceErrorExecutor(channel=channel).exec("uid", Context(), _error_model())
    command, args = channel.runs[0]
    assert posixpath.basename(command) == "strace"
    assert args == error_args(["1"], "open", "ENOENT", "", "", "")


@pytest.mark.parametrize("missing", ["time", "syscall-name", "delay-loc"])
def test_delay_exec_requires_flags(missing):
    with pytest.raises(ExperimentError) as info:
        StraceDelayExecutor(channel=FakeChannel()).exec("uid", Context(), _delay_model(**{missing: ""}))
    assert info.value.code is ErrorCode.PARAMETER_LESS
    assert info.value.details == (missing,)


@pytest.mark.parametrize("missing", ["return-value", "syscall-name"])
def test_error_exec_requires_flags(missing):
    with pytest.raises(ExperimentError) as info:
        StraceErrorExecutor(channel=FakeChannel()).exec("uid", Context(), _error_model(**{missing: ""}))
    assert info.value.code is ErrorCode.PARAMETER_LESS
    assert info.value.details == (missing,)


def test_delay_exec_without_channel():
    with pytest.raises(ExperimentError) as info:
        StraceDelayExecutor().exec("uid", Context(), _delay_model())
    assert info.value.code is ErrorCode.CHANNEL_NIL


def test_illegal_pid_rejected():
    with pytest.raises(ExperimentError) as info:
        StraceDelayExecutor(channel=FakeChannel()).exec("uid", Context(), _delay_model(pid="x"))
    assert info.value.code is ErrorCode.PARAMETER_ILLEGAL


def test_missing_pid_is_invalid():
    channel = FakeChannel()
    with pytest.raises(ExperimentError) as info:
        StraceErrorExecutor(channel=channel).exec("uid", Context(), _error_model(pid=""))
    assert info.value.code is ErrorCode.PARAMETER_INVALID
    assert channel.runs == []


def test_delay_destroy_kills_helper_processes():
    channel = FakeChannel(pids={"chaos_os": ["10"], STRACE_DELAY_BIN: ["11"]})
    StraceDelayExecutor(channel=channel).exec("uid", Context(uid="abc", destroy=True), _delay_model())
    assert (STRACE_DELAY_BIN, "abc") in channel.lookups
    command, args = channel.runs[-1]
    assert command == "kill"
    assert set(args.split()[1:]) == {"10", "11"}


def test_error_destroy_without_processes_fails():
    with pytest.raises(ExperimentError) as info:
        StraceErrorExecutor(channel=FakeChannel()).exec("uid", Context(destroy=True), _error_model())
    assert info.value.code is ErrorCode.OS_CMD_EXEC_FAILED


def test_kernel_model_spec_actions():
    spec = kernel_model_spec()
    assert spec.name == "strace"
    assert [action.name for action in spec.actions] == ["delay", "error"]
    assert isinstance(spec.action("error").executor, StraceErrorExecutor)


def test_actions_require_pid_matcher():
    for action in (strace_delay_action(), strace_error_action()):
        pid_flag = next(flag for flag in action.matchers if flag.name == "pid")
        assert pid_flag.required
        assert action.process_hang