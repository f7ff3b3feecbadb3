from .orchestrator import JobOrchestrator, select_combinations
from .progress import next_progress
from .session import StudioSession

__all__ = ["JobOrchestrator", "StudioSession", "next_progress", "select_combinations"]
