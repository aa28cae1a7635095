"""
Manual resolution.

Per-transaction chat flow for everything the automatic chain could not
classify. Manual decisions can teach new rules.
"""

from .callbacks import CallbackDataError
from .channel import ManualResolutionChannel
from .flow import FlowError, FlowStage, FlowState, InvalidTransitionError, transition
from .state_store import FlowStateStore, InMemoryFlowStateStore, RecordFlowStateStore
from .views import (
    Button,
    CategoryPageView,
    ClassifiedView,
    ErrorView,
    IgnoreConfirmationView,
    IgnoredView,
    InitialChoicesView,
    View,
)

__all__ = [
    "Button",
    "CallbackDataError",
    "CategoryPageView",
    "ClassifiedView",
    "ErrorView",
    "FlowError",
    "FlowStage",
    "FlowState",
    "FlowStateStore",
    "IgnoreConfirmationView",
    "IgnoredView",
    "InMemoryFlowStateStore",
    "InitialChoicesView",
    "InvalidTransitionError",
    "ManualResolutionChannel",
    "RecordFlowStateStore",
    "View",
    "transition",
]
