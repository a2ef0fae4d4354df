"""trialflow - trial workflow engine for behavioral experiments.

Simple usage:
    from trialflow import TrialWorkflow, WorkflowConfig

    workflow = TrialWorkflow.connect(WorkflowConfig(
        experiment_id="exp-1",
        participant_id="p-42",
        participant_number=3,
        base_url="https://experiments.example.org",
        api_key="...",
    ))
    if await workflow.initialize():
        trial = workflow.start_next_trial()
"""

__version__ = "0.1.0"

# =============================================================================
# Types
# =============================================================================

from .types import (
    AttachedSurvey,
    Checkpoint,
    FlattenedTrial,
    SurveyPosition,
    SurveyRequest,
    TrialKind,
    TrialNode,
    TrialPhase,
    WorkflowConfig,
    WorkflowCursor,
    WorkflowEvent,
)

# =============================================================================
# Exceptions
# =============================================================================

from .exceptions import (
    CheckpointError,
    GatewayError,
    InvalidTrialNodeError,
    NonRetryableRequestError,
    RequestFailedError,
    RetryExhaustedError,
    SpecificationError,
    TrialflowError,
)

# =============================================================================
# Components
# =============================================================================

from .control import RetryConfig, RetryStrategy
from .coordination import (
    CheckpointStorage,
    CheckpointStore,
    ConditionCache,
    FileCheckpointStorage,
    InMemoryCheckpointStorage,
)
from .gateway import ExperimentClient, ServerConfig
from .ordering import (
    GroupIndexSet,
    apply_latin_square,
    condition_signature,
    flatten_trials,
)
from .tree import parse_trial_document
from .utils.logging import configure_logging, get_logger
from .workflow import AutomatedDriver, TrialWorkflow

__all__ = [
    "__version__",
    # Types
    "AttachedSurvey",
    "Checkpoint",
    "FlattenedTrial",
    "SurveyPosition",
    "SurveyRequest",
    "TrialKind",
    "TrialNode",
    "TrialPhase",
    "WorkflowConfig",
    "WorkflowCursor",
    "WorkflowEvent",
    # Exceptions
    "CheckpointError",
    "GatewayError",
    "InvalidTrialNodeError",
    "NonRetryableRequestError",
    "RequestFailedError",
    "RetryExhaustedError",
    "SpecificationError",
    "TrialflowError",
    # Components
    "AutomatedDriver",
    "CheckpointStorage",
    "CheckpointStore",
    "ConditionCache",
    "ExperimentClient",
    "FileCheckpointStorage",
    "GroupIndexSet",
    "InMemoryCheckpointStorage",
    "RetryConfig",
    "RetryStrategy",
    "ServerConfig",
    "TrialWorkflow",
    "apply_latin_square",
    "condition_signature",
    "configure_logging",
    "flatten_trials",
    "get_logger",
    "parse_trial_document",
]
