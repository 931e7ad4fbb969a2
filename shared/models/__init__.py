"""Shared models package."""

from .workflow import (
    Role,
    UploadRequirement,
    ReviewStatus,
    ControllerMode,
    TaskTemplate,
    Period,
    WorkflowCatalog,
    Resolution,
    MissingTask,
    TaskStatus,
    SessionState,
    CompletionView,
    ResetEvent,
    ProgressSummary,
    BusinessStatus,
)

__all__ = [
    'Role',
    'UploadRequirement',
    'ReviewStatus',
    'ControllerMode',
    'TaskTemplate',
    'Period',
    'WorkflowCatalog',
    'Resolution',
    'MissingTask',
    'TaskStatus',
    'SessionState',
    'CompletionView',
    'ResetEvent',
    'ProgressSummary',
    'BusinessStatus',
]
