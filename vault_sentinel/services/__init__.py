"""Service modules"""
from .monitor import MonitoringService
from .report_sink import ReportSink
from .scheduler import ScheduleJob, Scheduler
from .state import MonitoringState

__all__ = ["MonitoringService", "ReportSink", "ScheduleJob", "Scheduler", "MonitoringState"]
