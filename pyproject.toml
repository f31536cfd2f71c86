[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "osfault"
version = "1.7.2"
description = "Operating-system fault injection experiments: CPU, memory, disk, file and syscall faults"
requires-python = ">=3.10"
dependencies = [
    "psutil",
]
keywords = ["chaos engineering", "fault injection", "resilience", "experiments", "strace", "cgroup"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["osfault"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
