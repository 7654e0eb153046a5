"""Background maintenance scheduler."""

from certprep.scheduler.maintenance import MaintenanceScheduler, TaskStatus

__all__ = ["MaintenanceScheduler", "TaskStatus"]
