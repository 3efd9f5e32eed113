"""stagewatch: pipeline stage-deadline alerting and appointment recurrence."""

__version__ = "0.1.0"
