# osfault

`osfault` describes operating-system fault injection experiments and provides
the executors that carry them out. Each experiment belongs to a model (`cpu`,
`mem`, `disk`, `file` or `strace`) and names an action within that model
(such as `fullload`, `fill` or `delay`). Flags on the action configure it.

## Installation

```
pip install osfault
```

To run the test suite:

```
pip install "osfault[test]"
pytest
```

## Experiments

| Model    | Actions                                      | Module                                   |
|----------|----------------------------------------------|------------------------------------------|
| `cpu`    | `fullload` (aliases `fl`, `load`)            | `osfault.cpu`                            |
| `mem`    | `load`                                       | `osfault.mem`                            |
| `disk`   | `fill`, `burn`                               | `osfault.disk_fill`, `osfault.disk_burn` |
| `file`   | `append`, `chmod`, `add`, `delete`, `move`   | `osfault.file_*`                         |
| `strace` | `delay`, `error` (Linux only)                | `osfault.kernel`                         |

`osfault.model.all_exp_models(platform)` returns the `ModelSpec` objects
available on a platform (`"linux..."` or `"darwin"`; any other platform raises
`ValueError`). With no argument it uses `sys.platform`.
`osfault.model.all_executors(platform)` returns a mapping from model name plus
action name (for example `"filedelete"` or `"cpufullload"`) to the executor of
that action. `ModelSpec.action(name)` finds an action by name or alias.

## Running an action

An executor has a `channel` attribute and an `exec(uid, ctx, model)` method.
`ctx` is an `osfault.spec.Context`; `model` is an `osfault.spec.ExpModel`
whose `action_flags` dictionary holds the action's flags as strings (flags
without arguments are given as `"true"`). The executor acts through the
channel, which you supply by subclassing `osfault.spec.Channel` and
implementing `run(command, args)`, `is_command_available(command)` and
`get_pids_by_process_name(name, process_key)`.

```python
from osfault.model import all_executors
from osfault.spec import Context, ExpModel

executor = all_executors("linux")["fileadd"]
executor.channel = my_channel  # your osfault.spec.Channel implementation

model = ExpModel(
    target="file",
    action_name="add",
    action_flags={"filepath": "/tmp/demo.log", "content": "hello"},
)
executor.exec("exp-1", Context(uid="exp-1"), model)
```

To undo an experiment, call the same executor with `Context(destroy=True)`.
For experiments that keep running, destroy kills the matching processes,
found by the context's uid or else by the action name.

Invalid flags and failed commands raise `osfault.spec.ExperimentError`; its
`code` attribute is an `ErrorCode`. A failing `Channel.run` is expected to
raise `osfault.spec.CommandError`, a subclass.

Some actions run until their process is killed and do not return: `cpu
fullload` (without `--cpu-list`), `mem load`, `disk burn`, `file append`, and
`disk fill` with `--retain-handle`.

## Utilities

- `osfault.spec.parse_integer_list(name, value)` expands lists such as
  `"0-2,4,6-7"` into `["0", "1", "2", "4", "6", "7"]`.
- `osfault.file_append.parse_date` and `parse_random` expand the
  `@{DATE:...}` and `@{RANDOM:a-b}` placeholders in appended content.
- `osfault.disk_fill.calculate_file_size` and
  `osfault.mem.calculate_mem_size` compute fill sizes in megabytes.
- `osfault.kernel.delay_args` and `error_args` build the strace arguments.
- `osfault.file_delete.hidden_backup_path` gives where a recoverably deleted
  file is kept.
- `osfault.cgroup` reads cgroup v1 CPU and memory accounting for a process.

## What the package does not do

- It has no command-line program; actions are run from Python.
- It ships no `Channel` implementation, local or remote: you provide the
  object that runs the commands.
- It has no network, process, script, systemd or time experiments.