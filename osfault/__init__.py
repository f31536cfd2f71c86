"""Operating-system fault injection experiments (CPU, memory, disk, file, strace) and their executors."""

__version__ = "1.7.2"