#!/usr/bin/env python3
"""
Utility functions for Log Batch Upload System
Common helpers for byte formatting and remote path joining
"""


def format_bytes(bytes_value: int, precision: int = 2) -> str:
    """Format bytes as human-readable string with auto-scaling (B/KB/MB/GB/TB)."""
    if bytes_value < 1024:
        return f"{bytes_value} B"
    elif bytes_value < 1024**2:
        return f"{bytes_value / 1024:.{precision}f} KB"
    elif bytes_value < 1024**3:
        return f"{bytes_value / 1024**2:.{precision}f} MB"
    elif bytes_value < 1024**4:
        return f"{bytes_value / 1024**3:.{precision}f} GB"
    else:
        return f"{bytes_value / 1024**4:.{precision}f} TB"


def join_remote_path(directory: str, name: str) -> str:
    """
    Join a remote directory and a file name with exactly one separator.

    Examples:
        >>> join_remote_path('logs/2015/01/22/10', 'a.log_b.log')
        'logs/2015/01/22/10/a.log_b.log'
        >>> join_remote_path('logs/2015/01/22/10/', 'a.log_b.log')
        'logs/2015/01/22/10/a.log_b.log'
    """
    if directory.endswith("/"):
        return directory + name
    return f"{directory}/{name}"
