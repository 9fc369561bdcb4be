"""Log Batch Upload System: merge time-bucketed log files and upload them once."""

__version__ = "1.0.0"
