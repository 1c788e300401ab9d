"""
Exceptions raised by the study-engine core.

Only ConfigConflictError (after its retry), rejected session completions and
hard persistence failures reach callers of the session flows; the rest resolve
to documented defaults.
"""
from __future__ import annotations


class StudyEngineError(Exception):
    """Base exception for all study-engine errors."""


class ConfigNotFoundError(StudyEngineError):
    """No active configuration record exists for a source/scope."""

    def __init__(self, source: str, scope_key: str):
        self.source = source
        self.scope_key = scope_key
        super().__init__(f"No active {source} configuration for scope '{scope_key}'")


class ConfigConflictError(StudyEngineError):
    """Two writers raced to activate a configuration for the same source/scope."""

    def __init__(self, source: str, scope_key: str):
        self.source = source
        self.scope_key = scope_key
        super().__init__(f"Concurrent {source} configuration write for scope '{scope_key}'")


class AnalysisFailure(StudyEngineError):
    """Performance aggregation could not produce a profile."""


class SchedulingUpdateFailure(StudyEngineError):
    """One item's scheduling write failed inside a batch."""

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Scheduling update failed for item {item_id}: {reason}")


class SessionInProgressError(StudyEngineError):
    """A session start for the same learner and scope is already running."""


class ItemNotFoundError(StudyEngineError):
    """A practice item referenced by a response does not exist."""


class GenerationJobError(StudyEngineError):
    """The generation job service rejected or could not receive a job."""
