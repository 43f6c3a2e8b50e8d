"""oh-my-ccg: persistent orchestration state and multi-model job execution."""

__version__ = "2.1.0"
