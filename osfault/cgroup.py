"""Reading cgroup v1 controllers of a process."""

from __future__ import annotations

import os
from typing import Callable

DEFAULT_CGROUP_ROOT = "/sys/fs/cgroup/"

_SUBSYSTEMS = (
    "systemd",
    "freezer",
    "pids",
    "net_cls",
    "net_prio",
    "perf_event",
    "cpuset",
    "cpu",
    "cpuacct",
    "memory",
    "blkio",
    "rdma",
)
_HUGEPAGES_DIR = "/sys/kernel/mm/hugepages"


class CgroupError(Exception):
    """A cgroup could not be found or read."""


def parse_cgroup_file(path: str) -> dict[str, str]:
    """Map each controller listed in a ``/proc/<pid>/cgroup`` file to its path."""
    controllers: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            line = line.rstrip("\n")
            if not line:
                continue
            parts = line.split(":", 2)
            if len(parts) < 3:
                raise CgroupError(f"invalid cgroup entry: {line!r}")
            for controller in parts[1].split(","):
                controllers[controller] = parts[2]
    return controllers


def pid_path(pid: int, proc_root: str = "/proc") -> Callable[[str], str]:
    """Return a lookup from controller name to the cgroup path of ``pid``."""
    path = os.path.join(proc_root, str(pid), "cgroup")
    try:
        paths = parse_cgroup_file(path)
    except (OSError, CgroupError) as exc:
        message = f"failed to parse cgroup file {path}: {exc}"

        def failed(name: str) -> str:
            raise CgroupError(message)

        return failed

    def lookup(name: str) -> str:
        for key in (name, "name=" + name):
            if key in paths:
                return paths[key]
        raise CgroupError("controller is not supported")

    return lookup


def _running_in_user_ns(uid_map: str = "/proc/self/uid_map") -> bool:
    try:
        with open(uid_map, encoding="utf-8") as handle:
            fields = handle.readline().split()
    except OSError:
        return False
    return fields[:3] != ["0", "0", "4294967295"]


def hierarchy(root: str) -> dict[str, str]:
    """Return the known subsystems mounted under ``root``, mapped to their directories."""
    names = list(_SUBSYSTEMS)
    if not _running_in_user_ns():
        names.append("devices")
    if os.path.isdir(_HUGEPAGES_DIR):
        names.append("hugetlb")
    subsystems = {}
    for name in names:
        directory = os.path.join(root, name)
        if os.path.lexists(directory):
            subsystems[name] = directory
    return subsystems


def _controller_dir(root: str, pid: int, proc_root: str, name: str) -> str | None:
    subsystems = hierarchy(root or DEFAULT_CGROUP_ROOT)
    if name not in subsystems:
        return None
    cgroup = pid_path(pid, proc_root)(name)
    return os.path.join(subsystems[name], cgroup.lstrip("/"))


def _read_int(path: str) -> int:
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read().strip()
    except FileNotFoundError:
        return 0
    try:
        return int(text)
    except ValueError as exc:
        raise CgroupError(f"unexpected content in {path}: {text!r}") from exc


def cpu_usage_total(root: str, pid: int, proc_root: str = "/proc") -> int:
    """Total CPU time, in nanoseconds, used by the cgroup of ``pid``."""
    directory = _controller_dir(root, pid, proc_root, "cpuacct")
    if directory is None:
        return 0
    return _read_int(os.path.join(directory, "cpuacct.usage"))


def memory_stats(root: str, pid: int, proc_root: str = "/proc") -> dict[str, int]:
    """Memory limit, usage and page cache, in bytes, of the cgroup of ``pid``."""
    stats = {"limit": 0, "usage": 0, "cache": 0}
    directory = _controller_dir(root, pid, proc_root, "memory")
    if directory is None:
        return stats
    stats["limit"] = _read_int(os.path.join(directory, "memory.limit_in_bytes"))
    stats["usage"] = _read_int(os.path.join(directory, "memory.usage_in_bytes"))
    try:
        with open(os.path.join(directory, "memory.stat"), encoding="utf-8") as handle:
            for line in handle:
                fields = line.split()
                if len(fields) == 2 and fields[0] == "cache":
                    stats["cache"] = int(fields[1])
    except FileNotFoundError:
        pass
    return stats