import pytest

from osfault.file_chmod import CHMOD_FILE_BIN, TMP_FILE_CHMOD, FileChmodExecutor, file_chmod_action
from osfault.spec import Category, Channel, CommandError, Context, ErrorCode, ExperimentError, ExpModel

ALL_COMMANDS = ("chmod", "grep", "echo", "rm", "awk", "cat", "stat")


class FakeChannel(Channel):
    def __init__(self, exists=True, responses=None, available=ALL_COMMANDS):
        self.exists = exists
        self.responses = responses or {}
        self.available = set(available)
        self.calls = []

    def run(self, command, args):
        if command.startswith("[ -e"):
            return "true" if self.exists else "false"
        self.calls.append((command, args))
        result = self.responses.get(command, "")
        if isinstance(result, Exception):
            raise result
        return result

    def is_command_available(self, command):
        return command in self.available

    def get_pids_by_process_name(self, name, process_key):
        return []


def model(mark="777", filepath="/tmp/a.log"):
    return ExpModel(action_flags={"mark": mark, "filepath": filepath})


@pytest.mark.parametrize("mark", ["778", "0777", "77", "rwx", ""])
def test_illegal_mark(mark):
    executor = FileChmodExecutor(channel=FakeChannel())
    with pytest.raises(ExperimentError) as info:
        executor.exec("u", Context(), model(mark=mark))
    assert info.value.code is ErrorCode.PARAMETER_ILLEGAL


def test_missing_command():
    executor = FileChmodExecutor(channel=FakeChannel(available=("chmod",)))
    with pytest.raises(ExperimentError) as info:
        executor.exec("u", Context(), model())
    assert info.value.code is ErrorCode.COMMAND_NOT_FOUND


def test_file_must_exist():
    executor = FileChmodExecutor(channel=FakeChannel(exists=False))
    with pytest.raises(ExperimentError) as info:
        executor.exec("u", Context(), model())
    assert info.value.code is ErrorCode.PARAMETER_INVALID


def test_already_experimented():
    channel = FakeChannel(responses={"grep": "found"})
    with pytest.raises(ExperimentError) as info:
        FileChmodExecutor(channel=channel).exec("u", Context(), model())
    assert info.value.code is ErrorCode.PARAMETER_ILLEGAL
    assert "already being experimented" in str(info.value)


def test_stat_failure():
    channel = FakeChannel(
        responses={"grep": CommandError("grep", "", ""), "stat": CommandError("stat", "", "denied")}
    )
    with pytest.raises(ExperimentError) as info:
        FileChmodExecutor(channel=channel).exec("u", Context(), model())
    assert info.value.code is ErrorCode.PARAMETER_ILLEGAL
    assert "can't get file's mark" in str(info.value)


def test_chmod_records_origin_mark():
    channel = FakeChannel(
        responses={"grep": CommandError("grep", "", ""), "stat": "644", "chmod": "done"}
    )
    result = FileChmodExecutor(channel=channel).exec("u", Context(), model())
    assert result == "done"
    assert channel.calls == [
        ("grep", f'-q "/tmp/a.log:" "{TMP_FILE_CHMOD}"'),
        ("stat", '-c "%a" /tmp/a.log'),
        ("echo", f"'/tmp/a.log:644' >> {TMP_FILE_CHMOD}"),
        ("chmod", '777 "/tmp/a.log"'),
    ]


def test_destroy_restores_mark_and_cleans_record():
    channel = FakeChannel(responses={"grep": "644", "chmod": "restored", "cat": "/other.log:600\n"})
    result = FileChmodExecutor(channel=channel).exec("u", Context(destroy=True), model())
    assert result == "restored"
    assert ("chmod", "644 /tmp/a.log") in channel.calls
    assert channel.calls[-1] == ("echo", f'"/other.log:600" > {TMP_FILE_CHMOD}')


def test_destroy_without_record_removes_temp_file():
    channel = FakeChannel(
        responses={"grep": CommandError("grep", "", "no match"), "cat": CommandError("cat", "", "")}
    )
    with pytest.raises(CommandError):
        FileChmodExecutor(channel=channel).exec("u", Context(destroy=True), model())
    assert channel.calls[-1] == ("rm", f'-rf "{TMP_FILE_CHMOD}"')
    assert all(command != "chmod" for command, _ in channel.calls)


def test_action_spec():
    action = file_chmod_action()
    assert action.name == "chmod"
    assert action.programs == [CHMOD_FILE_BIN]
    assert action.categories == [Category.SYSTEM_FILE]
    assert [flag.name for flag in action.matchers] == ["filepath"]
    assert [(flag.name, flag.required) for flag in action.flags] == [("mark", True)]