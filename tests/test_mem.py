from collections import namedtuple
from unittest import mock

import pytest

from osfault.mem import (
    BURN_MEM_BIN,
    MemExecutor,
    available_and_total,
    calculate_mem_size,
    mem_model_spec,
)
from osfault.spec import Channel, Context, ErrorCode, ExperimentError, ExpModel

MB = 1024 * 1024

FakeMemory = namedtuple("FakeMemory", "total free buffers cached")


class FakeChannel(Channel):
    def __init__(self, commands=("dd", "mount", "umount", "kill"), pids=None):
        self.commands = set(commands)
        self.pids = pids or {}
        self.calls = []

    def run(self, command, args):
        self.calls.append((command, args))
        return "ok"

    def is_command_available(self, command):
        return command in self.commands

    def get_pids_by_process_name(self, name, process_key):
        return list(self.pids.get(name, []))


def _exec(flags, channel=None, ctx=None):
    executor = MemExecutor(channel=channel if channel is not None else FakeChannel())
    return executor.exec("uid", ctx or Context(), ExpModel(target="mem", action_name="load", action_flags=flags))


@pytest.mark.parametrize(
    "flags, name",
    [
        ({"mem-percent": "abc"}, "mem-percent"),
        ({"mem-percent": "101"}, "mem-percent"),
        ({"mem-percent": "-1"}, "mem-percent"),
        ({"reserve": "lots"}, "reserve"),
        ({"mem-percent": "50", "rate": "fast"}, "rate"),
    ],
)
def test_illegal_flags_are_rejected(flags, name):
    with pytest.raises(ExperimentError) as info:
        _exec(flags)
    assert info.value.code is ErrorCode.PARAMETER_ILLEGAL
    assert info.value.details[0] == name


def test_missing_command_is_reported():
    with pytest.raises(ExperimentError) as info:
        _exec({"mem-percent": "50"}, channel=FakeChannel(commands=("dd", "mount")))
    assert info.value.code is ErrorCode.COMMAND_NOT_FOUND
    assert info.value.details == ("umount",)


def test_missing_channel_is_reported():
    executor = MemExecutor()
    with pytest.raises(ExperimentError) as info:
        executor.exec("uid", Context(), ExpModel(action_flags={"mem-percent": "50"}))
    assert info.value.code is ErrorCode.CHANNEL_NIL


def test_destroy_kills_load_processes():
    channel = FakeChannel(pids={"chaos_os": ["11"], BURN_MEM_BIN: ["22"]})
    result = _exec({"mode": "ram"}, channel=channel, ctx=Context(destroy=True))
    assert result == "ok"
    assert channel.calls == [("kill", "-9 11 22")]


def test_destroy_without_processes_fails():
    with pytest.raises(ExperimentError) as info:
        _exec({}, ctx=Context(destroy=True))
    assert info.value.code is ErrorCode.OS_CMD_EXEC_FAILED


def test_calculate_full_percent_takes_all_available():
    result = calculate_mem_size(8192 * MB, 3000 * MB, 100, 0)
    assert result.total == 8192
    assert result.expected == 3000


def test_calculate_reserve_leaves_reserve_free():
    result = calculate_mem_size(8192 * MB, 3000 * MB, 0, 200)
    assert result.expected == 3000 - 200


def test_calculate_percent_is_relative_to_total():
    full = calculate_mem_size(4096 * MB, 4096 * MB, 100, 0)
    half = calculate_mem_size(4096 * MB, 4096 * MB, 50, 0)
    assert half.expected == full.expected - 4096 // 2


def test_calculate_can_go_negative_when_already_above_target():
    result = calculate_mem_size(1024 * MB, 0, 50, 0)
    assert result.expected < 0


def test_host_memory_counts_cache_in_ram_mode():
    fake = FakeMemory(total=1000, free=100, buffers=20, cached=30)
    with mock.patch("osfault.mem.psutil.virtual_memory", return_value=fake):
        ram = available_and_total(Context(), "ram", False)
        ram_with_cache = available_and_total(Context(), "ram", True)
        cache_mode = available_and_total(Context(), "cache", False)
    assert ram.total == 1000
    assert ram.available == 100 + 20 + 30
    assert ram_with_cache.available == 100
    assert cache_mode.available == 100


def test_illegal_target_pid_raises():
    with pytest.raises(ExperimentError) as info:
        available_and_total(Context(target_pid="not-a-pid"), "ram", False)
    assert info.value.code is ErrorCode.OS_CMD_EXEC_FAILED


def test_model_spec_describes_load_action():
    spec = mem_model_spec()
    assert spec.name == "mem"
    action = spec.action("load")
    assert action.programs == [BURN_MEM_BIN]
    assert action.process_hang is True
    assert isinstance(action.executor, MemExecutor)
    flags = {flag.name: flag for flag in spec.flags}
    assert flags["cgroup-root"].default == "/sys/fs/cgroup"
    assert flags["include-buffer-cache"].no_args is True
    assert flags["avoid-being-killed"].no_args is True


def test_model_spec_rejects_unknown_action():
    with pytest.raises(KeyError):
        mem_model_spec().action("burn")