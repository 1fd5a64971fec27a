"""
models package
"""

from .job import Job, JobStatus, can_transition
from .preferences import EditingPreferences, PresetName, apply_preset

__all__ = ["Job", "JobStatus", "can_transition", "EditingPreferences", "PresetName", "apply_preset"]
