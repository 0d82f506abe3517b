"""hikae — single-target restic backups for cluster workloads."""

__version__ = "0.3.0"
