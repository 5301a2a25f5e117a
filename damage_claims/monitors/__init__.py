# Transition hooks and the deadline sweeper
from .deadline_sweeper import DeadlineSweeper, SweepReport
from .transition_monitor import StatusHandler, TransitionMonitor

__all__ = ["DeadlineSweeper", "StatusHandler", "SweepReport", "TransitionMonitor"]
