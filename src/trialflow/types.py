"""Core types and data models for trialflow."""

import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================


class TrialKind(str, Enum):
    """Kind of a node in the trial tree."""

    STANDALONE = "standalone"
    WITHIN = "within"
    BETWEEN = "between"
    SURVEY = "survey"
    # Bookkeeping items handled by the web portal, never executed
    CONSENT = "consent"
    ENTRY = "entry"
    COMPLETION = "completion"


BOOKKEEPING_KINDS = frozenset({TrialKind.CONSENT, TrialKind.ENTRY, TrialKind.COMPLETION})
GROUP_KINDS = frozenset({TrialKind.WITHIN, TrialKind.BETWEEN})


class TrialPhase(str, Enum):
    """Lifecycle phase of the trial under the cursor."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABORTED = "aborted"


class SurveyPosition(str, Enum):
    """Where a survey is interjected relative to its trial."""

    BEFORE = "before"
    AFTER = "after"
    STANDALONE = "standalone"
    NONE = "none"


class WorkflowEvent(str, Enum):
    """Signals emitted by the workflow."""

    SURVEY_REQUIRED = "survey_required"
    TRIAL_STARTING = "trial_starting"
    TRIAL_STARTED = "trial_started"
    TRIAL_READY = "trial_ready"
    TRIAL_COMPLETED = "trial_completed"
    TRIAL_ABORTED = "trial_aborted"
    WORKFLOW_COMPLETED = "workflow_completed"
    CHECKPOINT_SAVED = "checkpoint_saved"


# =============================================================================
# Trial Tree
# =============================================================================


class AttachedSurvey(BaseModel):
    """Questionnaire shown before or after a trial."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Survey instance identifier")
    name: str = Field(default="", description="Display name")
    position: SurveyPosition

    @field_validator("position", mode="before")
    @classmethod
    def _normalize_position(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
        return value

    @field_validator("position")
    @classmethod
    def _only_before_or_after(cls, value: SurveyPosition) -> SurveyPosition:
        if value not in (SurveyPosition.BEFORE, SurveyPosition.AFTER):
            raise ValueError("attached survey position must be 'before' or 'after'")
        return value


class TrialNode(BaseModel):
    """One unit of the server-authored trial tree.

    Nodes are shared read-only between every flattened position that
    references them, so the model is frozen.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    kind: TrialKind
    label: str = ""
    description: str = ""
    order: int = 0
    repetition_count: int = Field(default=1, description="Number of occurrences, at least 1")
    conditions: dict[str, str] = Field(default_factory=dict)
    child_nodes: list["TrialNode"] = Field(default_factory=list)
    within_subjects_ivs: list[str] = Field(default_factory=list)
    between_subjects_ivs: list[str] = Field(default_factory=list)
    ordering_policy: str | None = None
    randomization_type: str | None = None
    attached_survey: AttachedSurvey | None = None
    survey_id: str | None = None
    survey_name: str | None = None

    @field_validator("repetition_count", mode="before")
    @classmethod
    def _normalize_repetitions(cls, value: Any) -> Any:
        if value is None:
            return 1
        return value

    @field_validator("repetition_count")
    @classmethod
    def _check_repetitions(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"repetition count must not be negative (got {value})")
        return value or 1

    @field_validator("conditions", mode="before")
    @classmethod
    def _stringify_conditions(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @model_validator(mode="after")
    def _check_group_shape(self) -> "TrialNode":
        if self.kind in GROUP_KINDS:
            if self.is_group and not self.child_nodes:
                raise ValueError(f"group '{self.id}' ({self.kind.value}) has no child trials")
        elif self.child_nodes:
            raise ValueError(f"only within/between nodes may have children (kind {self.kind.value})")
        return self

    @property
    def is_group(self) -> bool:
        """A within/between node with a non-empty matching IV set."""
        if self.kind == TrialKind.WITHIN:
            return bool(self.within_subjects_ivs)
        if self.kind == TrialKind.BETWEEN:
            return bool(self.between_subjects_ivs)
        return False

    @property
    def is_bookkeeping(self) -> bool:
        return self.kind in BOOKKEEPING_KINDS

    @property
    def is_survey(self) -> bool:
        return self.kind == TrialKind.SURVEY

    @property
    def requires_latin_square(self) -> bool:
        """Whether the ordering hints ask for Latin-square counterbalancing."""
        if self.ordering_policy:
            policy = self.ordering_policy.lower()
            if "latin" in policy or "counterbalanced" in policy:
                return True
        if self.randomization_type:
            randomization = self.randomization_type.lower()
            if "latin" in randomization or "counterbalanced" in randomization:
                return True
        return False

    @property
    def display_name(self) -> str:
        return self.label or self.id


TrialNode.model_rebuild()


# =============================================================================
# Flattened Sequence
# =============================================================================


@dataclass(frozen=True)
class FlattenedTrial:
    """A position in the executable sequence.

    ``node`` is the shared TrialNode; repetitions reference the same object.
    """

    node: TrialNode
    parent_group_id: str | None = None
    parent_group_type: TrialKind | None = None
    requires_latin_square: bool = False

    @property
    def id(self) -> str:
        return self.node.id

    @property
    def label(self) -> str:
        return self.node.label

    @property
    def kind(self) -> TrialKind:
        return self.node.kind

    @property
    def conditions(self) -> dict[str, str]:
        return self.node.conditions

    @property
    def attached_survey(self) -> AttachedSurvey | None:
        return self.node.attached_survey

    @property
    def in_group(self) -> bool:
        return self.parent_group_id is not None


@dataclass(frozen=True)
class WorkflowCursor:
    """Read-only view of the workflow position."""

    current_index: int = -1
    trial_phase: TrialPhase = TrialPhase.NOT_STARTED
    waiting_for_survey: bool = False
    pending_survey_position: SurveyPosition = SurveyPosition.NONE


class SurveyRequest(BaseModel):
    """Payload of the survey-required signal."""

    survey_id: str
    survey_name: str = ""
    position: SurveyPosition
    trial_index: int
    trial_id: str | None = None


# =============================================================================
# Checkpoints
# =============================================================================


class Checkpoint(BaseModel):
    """Last completed position of a participant in an experiment."""

    participant_id: str
    experiment_id: str
    completed_index: int = Field(..., ge=0)
    timestamp: datetime = Field(default_factory=datetime.now)


# =============================================================================
# Configuration
# =============================================================================


class WorkflowConfig(BaseModel):
    """Configuration for a participant session."""

    experiment_id: str = Field(..., min_length=1)
    participant_id: str | None = Field(default=None, description="Enables checkpoint resume")
    participant_number: int | None = Field(
        default=None, description="Sequence number used for counterbalancing"
    )
    manual_between_assignments: dict[str, int] = Field(
        default_factory=dict, description="Between-group id to partition index"
    )
    base_url: str | None = Field(default=None, description="Experiment server base URL")
    api_key: str | None = Field(default=None, description="Bearer token")
    request_timeout: float = Field(default=30.0, gt=0)
    checkpoint_dir: str | None = Field(
        default=None, description="Directory for local fallback checkpoints"
    )
    auto_apply_latin_square: bool = True

    @classmethod
    def from_env(cls, prefix: str = "TRIALFLOW_", **overrides: Any) -> "WorkflowConfig":
        """Build a config from environment variables.

        Recognized variables (with the default prefix): TRIALFLOW_EXPERIMENT_ID,
        TRIALFLOW_PARTICIPANT_ID, TRIALFLOW_PARTICIPANT_NUMBER, TRIALFLOW_BASE_URL,
        TRIALFLOW_API_KEY, TRIALFLOW_REQUEST_TIMEOUT, TRIALFLOW_CHECKPOINT_DIR.

        Args:
            prefix: Environment variable prefix.
            **overrides: Explicit values that win over the environment.

        Returns:
            Validated config.
        """
        values: dict[str, Any] = {}
        for name in (
            "experiment_id",
            "participant_id",
            "participant_number",
            "base_url",
            "api_key",
            "request_timeout",
            "checkpoint_dir",
        ):
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw:
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)
