import threading

import pytest

from osfault.disk_burn import (
    BURN_IO_BIN,
    READ_FILE,
    WRITE_FILE,
    DiskBurnExecutor,
    dd_arg_templates,
    disk_burn_action,
)
from osfault.spec import Category, Channel, CommandError, Context, ErrorCode, ExperimentError, ExpModel


class FakeChannel(Channel):
    def __init__(self, missing=(), failing=(), os_release=None, pids=("42",)):
        self.calls = []
        self.missing = set(missing)
        self.failing = set(failing)
        self.os_release = os_release
        self.pids = list(pids)
        self._lock = threading.Lock()

    def run(self, command, args):
        with self._lock:
            self.calls.append((command, args))
        if command in self.failing:
            raise CommandError(command, args, "failed")
        if command == "cat":
            if self.os_release is None:
                raise CommandError(command, args, "no such file")
            return self.os_release
        return ""

    def is_command_available(self, command):
        return command not in self.missing

    def get_pids_by_process_name(self, name, process_key):
        return list(self.pids) if name == "chaos_os" else []


def test_default_templates_use_dsync():
    create, read, write = dd_arg_templates(None)
    assert create == "if=/dev/zero of={} bs={}M count={} oflag=dsync"
    assert read == "if={} of=/dev/null bs={}M count={} iflag=dsync,direct,fullblock"
    assert write == "if=/dev/zero of={} bs={}M count={} oflag=dsync"


def test_alpine_templates_use_append():
    create, read, write = dd_arg_templates('NAME="Alpine Linux"\nID=alpine\n')
    assert create == "if=/dev/zero of={} bs={}M count={} oflag=append"
    assert read == "if={} of=/dev/null bs={}M count={} iflag=fullblock oflag=append"
    assert write == "if=/dev/zero of={} bs={}M count={} oflag=append"


def test_other_release_keeps_defaults():
    assert dd_arg_templates("ID=ubuntu\n") == dd_arg_templates(None)


def test_missing_dd_is_reported():
    executor = DiskBurnExecutor(channel=FakeChannel(missing={"dd"}))
    with pytest.raises(ExperimentError) as info:
        executor.exec("uid", Context(), ExpModel(action_flags={"read": "true"}))
    assert info.value.code is ErrorCode.COMMAND_NOT_FOUND


def test_no_channel_is_reported():
    with pytest.raises(ExperimentError) as info:
        DiskBurnExecutor().exec("uid", Context(), ExpModel())
    assert info.value.code is ErrorCode.CHANNEL_NIL


def test_path_must_be_directory(tmp_path):
    executor = DiskBurnExecutor(channel=FakeChannel())
    missing = str(tmp_path / "absent")
    with pytest.raises(ExperimentError) as info:
        executor.exec("uid", Context(), ExpModel(action_flags={"read": "true", "path": missing}))
    assert info.value.code is ErrorCode.PARAMETER_ILLEGAL
    assert missing in str(info.value)


def test_read_or_write_required(tmp_path):
    executor = DiskBurnExecutor(channel=FakeChannel())
    with pytest.raises(ExperimentError) as info:
        executor.exec("uid", Context(), ExpModel(action_flags={"path": str(tmp_path)}))
    assert info.value.code is ErrorCode.PARAMETER_LESS


def test_burn_runs_dd_until_it_fails(tmp_path):
    channel = FakeChannel(failing={"dd"})
    executor = DiskBurnExecutor(channel=channel)
    directory = str(tmp_path)
    with pytest.raises(ExperimentError) as info:
        executor.exec(
            "uid",
            Context(),
            ExpModel(action_flags={"path": directory, "read": "true", "write": "true", "size": "5"}),
        )
    assert info.value.code is ErrorCode.OS_CMD_EXEC_FAILED
    dd_args = [args for command, args in channel.calls if command == "dd"]
    create, read, write = dd_arg_templates(None)
    assert create.format(f"{directory}/{READ_FILE}", 6, 100) in dd_args
    assert read.format(f"{directory}/{READ_FILE}", "5", 100) in dd_args
    assert write.format(f"{directory}/{WRITE_FILE}", "5", 100) in dd_args


def test_burn_uses_default_size(tmp_path):
    channel = FakeChannel(failing={"dd"}, os_release="ID=alpine")
    executor = DiskBurnExecutor(channel=channel)
    directory = str(tmp_path)
    with pytest.raises(ExperimentError):
        executor.exec("uid", Context(), ExpModel(action_flags={"path": directory, "write": "true"}))
    _, _, write = dd_arg_templates("ID=alpine")
    assert ("dd", write.format(f"{directory}/{WRITE_FILE}", "10", 100)) in channel.calls


def test_destroy_without_flags_cleans_both_files():
    channel = FakeChannel()
    executor = DiskBurnExecutor(channel=channel)
    executor.exec("uid", Context(destroy=True), ExpModel(action_flags={"path": "/data"}))
    assert ("rm", f"-rf /data/{READ_FILE}*") in channel.calls
    assert ("rm", f"-rf /data/{WRITE_FILE}*") in channel.calls
    assert ("kill", "-9 42") in channel.calls


def test_destroy_read_only_cleans_read_file():
    channel = FakeChannel()
    executor = DiskBurnExecutor(channel=channel)
    executor.exec("uid", Context(destroy=True), ExpModel(action_flags={"read": "true"}))
    rm_calls = [args for command, args in channel.calls if command == "rm"]
    assert rm_calls == [f"-rf /{READ_FILE}*"]


def test_destroy_without_processes_fails():
    channel = FakeChannel(pids=())
    executor = DiskBurnExecutor(channel=channel)
    with pytest.raises(ExperimentError) as info:
        executor.exec("uid", Context(destroy=True), ExpModel())
    assert info.value.code is ErrorCode.OS_CMD_EXEC_FAILED


def test_action_description():
    action = disk_burn_action()
    assert action.name == "burn"
    assert action.programs == [BURN_IO_BIN]
    assert action.categories == [Category.SYSTEM_DISK]
    assert action.process_hang is True
    assert [flag.name for flag in action.flags] == ["size", "path"]
    assert isinstance(action.executor, DiskBurnExecutor)