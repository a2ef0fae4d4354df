"""TrialWorkflow - the per-participant trial state machine.

The workflow owns the flattened trial sequence and a cursor into it. Session
code (or the AutomatedDriver) moves the cursor with start/complete/abort
calls; surveys are interjected by pausing the cursor until
``mark_survey_completed`` is called.

Calls made in the wrong state are refused with a logged warning and a
False/None result. Nothing here raises for sequencing mistakes.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Mapping, Protocol, Sequence

from ..control.retry import RetryConfig, RetryStrategy, SleepFn
from ..coordination.checkpoint import CheckpointStore, FileCheckpointStorage, InMemoryCheckpointStorage
from ..coordination.conditions import ConditionSink
from ..exceptions import GatewayError, SpecificationError
from ..gateway.client import ExperimentClient, ServerConfig
from ..ordering import (
    GroupIndexSet,
    apply_latin_square,
    block_shuffle,
    check_total_participants,
    flatten_trials,
    group_sizes,
    seeded_shuffle,
    shuffle_trials,
    validate_counterbalancing,
)
from ..tree.parser import parse_trial_document
from ..types import (
    AttachedSurvey,
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
from ..utils.logging import StructuredLogger
from .driver import AutomatedDriver

logger = logging.getLogger(__name__)


class TrialSource(Protocol):
    """Fetches the trial document for an experiment, e.g. ExperimentClient."""

    async def fetch_trial_document(self, experiment_id: str) -> Any: ...


class TrialWorkflow:
    """Delivers one participant's trials in a controlled, resumable order.

    Example:
        workflow = TrialWorkflow(config, source=client, checkpoint_store=store)
        if await workflow.initialize():
            trial = workflow.start_next_trial()
            ...
            workflow.complete_trial()
    """

    def __init__(
        self,
        config: WorkflowConfig,
        source: TrialSource | None = None,
        checkpoint_store: CheckpointStore | None = None,
        condition_sink: ConditionSink | None = None,
        fetch_retry: RetryConfig | None = None,
        sleep_fn: SleepFn | None = None,
    ):
        """Initialize a workflow.

        Args:
            config: Session configuration.
            source: Trial document fetcher used by ``initialize``.
            checkpoint_store: Checkpoint persistence. Defaults to a local-only
                store (file-backed when ``config.checkpoint_dir`` is set).
            condition_sink: Receives condition values when a trial starts.
            fetch_retry: Retry policy for the document fetch.
            sleep_fn: Sleep used between fetch retries.
        """
        self._config = config
        self._source = source
        if checkpoint_store is None:
            local = (
                FileCheckpointStorage(config.checkpoint_dir)
                if config.checkpoint_dir
                else InMemoryCheckpointStorage()
            )
            checkpoint_store = CheckpointStore(local=local)
        self._checkpoints = checkpoint_store
        self._condition_sink = condition_sink
        self._fetch_strategy = RetryStrategy(fetch_retry or RetryConfig(), sleep_fn=sleep_fn)

        self._log = StructuredLogger("workflow").with_context(
            experiment=config.experiment_id,
            participant=config.participant_id,
        )
        self._callbacks: dict[WorkflowEvent, list[Callable[[Any], None]]] = {}
        self._pending_saves: set[asyncio.Task] = set()
        self._driver: AutomatedDriver | None = None
        self._client: ExperimentClient | None = None

        # Sequence
        self._nodes: list[TrialNode] = []
        self._trials: list[FlattenedTrial] = []
        self._latin_groups: dict[str, list[int]] = {}
        self._index = GroupIndexSet()
        self._initialized = False
        self._latin_applied = False

        # Cursor
        self._current_index = -1
        self._phase = TrialPhase.NOT_STARTED
        self._waiting_for_survey = False
        self._pending_survey = SurveyPosition.NONE
        self._survey_index: int | None = None
        self._cleared_before_index: int | None = None
        self._trial_start: float | None = None
        self._last_duration = 0.0
        self._last_abort_reason: str | None = None

    @classmethod
    def connect(
        cls,
        config: WorkflowConfig,
        transport: Any = None,
        condition_sink: ConditionSink | None = None,
        **kwargs: Any,
    ) -> "TrialWorkflow":
        """Build a workflow talking to the experiment server in ``config``.

        The same ExperimentClient serves the trial document and the remote
        checkpoints.

        Raises:
            ValueError: If ``config.base_url`` is not set.
        """
        if not config.base_url:
            raise ValueError("WorkflowConfig.base_url is required to connect")
        client = ExperimentClient(
            ServerConfig(base_url=config.base_url, api_key=config.api_key, timeout=config.request_timeout),
            transport=transport,
        )
        local = (
            FileCheckpointStorage(config.checkpoint_dir) if config.checkpoint_dir else InMemoryCheckpointStorage()
        )
        store = CheckpointStore(remote=client, local=local, sleep_fn=kwargs.get("sleep_fn"))
        workflow = cls(config, source=client, checkpoint_store=store, condition_sink=condition_sink, **kwargs)
        workflow._client = client
        return workflow

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def trials(self) -> list[FlattenedTrial]:
        """Copy of the flattened sequence."""
        return list(self._trials)

    @property
    def nodes(self) -> list[TrialNode]:
        return list(self._nodes)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def total_trial_count(self) -> int:
        return len(self._trials)

    @property
    def has_more_trials(self) -> bool:
        return self._initialized and self._current_index + 1 < len(self._trials)

    @property
    def trial_phase(self) -> TrialPhase:
        return self._phase

    @property
    def is_trial_in_progress(self) -> bool:
        return self._phase == TrialPhase.IN_PROGRESS

    @property
    def is_waiting_for_survey(self) -> bool:
        return self._waiting_for_survey

    @property
    def pending_survey_position(self) -> SurveyPosition:
        return self._pending_survey

    @property
    def cursor(self) -> WorkflowCursor:
        return WorkflowCursor(
            current_index=self._current_index,
            trial_phase=self._phase,
            waiting_for_survey=self._waiting_for_survey,
            pending_survey_position=self._pending_survey,
        )

    @property
    def current_trial(self) -> FlattenedTrial | None:
        if not self._initialized or not 0 <= self._current_index < len(self._trials):
            return None
        return self._trials[self._current_index]

    @property
    def last_trial_duration(self) -> float:
        return self._last_duration

    @property
    def last_abort_reason(self) -> str | None:
        return self._last_abort_reason

    @property
    def requires_latin_square_ordering(self) -> bool:
        return bool(self._latin_groups)

    @property
    def group_index(self) -> GroupIndexSet:
        return self._index

    # =========================================================================
    # Signals
    # =========================================================================

    def on(self, event: WorkflowEvent, callback: Callable[[Any], None]) -> None:
        """Register a callback for a workflow event."""
        self._callbacks.setdefault(WorkflowEvent(event), []).append(callback)

    def off(self, event: WorkflowEvent, callback: Callable[[Any], None]) -> None:
        """Remove a previously registered callback."""
        event = WorkflowEvent(event)
        if event in self._callbacks:
            self._callbacks[event] = [cb for cb in self._callbacks[event] if cb != callback]

    def emit(self, event: WorkflowEvent, payload: Any = None) -> None:
        """Deliver an event once to every registered callback.

        A failing callback is logged and does not stop delivery or the
        transition that emitted the event.
        """
        for callback in list(self._callbacks.get(event, [])):
            try:
                callback(payload)
            except Exception:
                logger.exception(f"Callback for {event.value} failed")

    # =========================================================================
    # Initialization
    # =========================================================================

    async def initialize(self) -> bool:
        """Fetch, parse and order the trial document, then resume from checkpoint.

        Returns:
            True if the workflow is ready. On failure the workflow stays
            uninitialized and the reason is logged.
        """
        if self._source is None:
            self._log.error("No trial source configured")
            return False

        try:
            document = await self._fetch_strategy.execute(
                self._source.fetch_trial_document, self._config.experiment_id
            )
        except GatewayError as e:
            self._log.error(f"Failed to fetch trial document: {e}")
            return False

        if not self.load_document(document):
            return False

        if self._config.participant_id:
            await self.resume_from_checkpoint()
        return True

    def load_document(self, payload: str | bytes | list | dict) -> bool:
        """Initialize from an already fetched trial document."""
        try:
            nodes = parse_trial_document(payload)
        except SpecificationError as e:
            self._log.error(f"Trial document rejected: {e}")
            self._initialized = False
            return False
        return self.load_nodes(nodes)

    def load_nodes(self, nodes: Sequence[TrialNode]) -> bool:
        """Initialize from parsed top-level nodes.

        Flattens the tree, builds the group index and, when configured,
        applies Latin-square ordering. The cursor is reset.
        """
        number = self._config.participant_number
        if number is None:
            logger.debug("No participant number configured; between-subjects groups use condition 0")
        result = flatten_trials(nodes, number or 0, self._config.manual_between_assignments)

        self._nodes = list(nodes)
        self._trials = result.trials
        self._latin_groups = result.latin_square_groups
        self._index = GroupIndexSet.build(self._trials)
        self._latin_applied = False
        self._initialized = True
        self._reset_cursor()

        self._log.info(
            f"Workflow initialized with {len(self._trials)} trials",
            groups=len(self._index),
            latin_groups=len(self._latin_groups),
        )

        if self._latin_groups and number is not None and self._config.auto_apply_latin_square:
            self.apply_latin_square_ordering(number)
        elif self._latin_groups:
            self._log.warning("Latin-square groups present; call apply_latin_square_ordering() before starting")
        return True

    async def resume_from_checkpoint(self) -> bool:
        """Move the cursor to the last completed position, if one is stored.

        Only allowed before the first trial starts. The next
        ``start_next_trial`` continues after the checkpointed position.
        """
        participant_id = self._config.participant_id
        if not participant_id:
            return False
        if not self._initialized or self._current_index >= 0:
            self._log.warning("Cannot resume: workflow not initialized or already started")
            return False

        index = await self._checkpoints.load(participant_id, self._config.experiment_id, len(self._trials))
        if index is None:
            self._log.info("No checkpoint found; starting from the beginning")
            return False

        self._current_index = index
        self._phase = TrialPhase.NOT_STARTED
        self._log.info(f"Resumed from checkpoint: trial {index + 1}/{len(self._trials)} completed")
        return True

    def reset_workflow(self) -> None:
        """Rewind the cursor to the beginning without touching the ordering."""
        self._reset_cursor()
        self._log.info("Workflow reset to beginning")

    def _reset_cursor(self) -> None:
        self._current_index = -1
        self._phase = TrialPhase.NOT_STARTED
        self._waiting_for_survey = False
        self._pending_survey = SurveyPosition.NONE
        self._survey_index = None
        self._cleared_before_index = None
        self._trial_start = None
        self._last_duration = 0.0
        self._last_abort_reason = None

    # =========================================================================
    # Ordering
    # =========================================================================

    def _can_reorder(self, action: str) -> bool:
        if not self._initialized:
            self._log.warning(f"Cannot {action}: workflow not initialized")
            return False
        if self._current_index >= 0:
            self._log.warning(f"Cannot {action}: trials have already started")
            return False
        if self._waiting_for_survey:
            self._log.warning(f"Cannot {action}: a survey is pending")
            return False
        if not self._trials:
            self._log.warning(f"Cannot {action}: no trials in workflow")
            return False
        return True

    def _reorder(self, trials: list[FlattenedTrial]) -> None:
        self._trials = trials
        self._index = GroupIndexSet.build(trials)
        self._latin_groups = {gid: self._index.positions(gid) for gid in self._latin_groups}

    def apply_latin_square_ordering(
        self,
        participant_number: int | None = None,
        total_participants: int | None = None,
    ) -> bool:
        """Counterbalance the sequence for one participant.

        Rotates each Latin-square within-group, or the whole sequence when no
        group asks for it. May only be applied once, before the first trial.

        Args:
            participant_number: Defaults to the configured participant number.
            total_participants: Planned cohort size; when given, ordering is
                refused if the cohort cannot complete the square.

        Returns:
            True if the ordering was applied.
        """
        if not self._can_reorder("apply Latin square"):
            return False
        if self._latin_applied:
            self._log.warning("Latin square already applied; refusing to rotate again")
            return False

        number = participant_number if participant_number is not None else self._config.participant_number
        if number is None:
            self._log.error("Cannot apply Latin square: no participant number provided")
            return False
        if number < 0:
            self._log.warning(f"Invalid participant number ({number}); using 0")
            number = 0

        sizes = group_sizes(self._latin_groups, len(self._trials))
        for group_name, count in sizes.items():
            validate_counterbalancing(group_name, count, number)
        if total_participants is not None and not check_total_participants(sizes, number, total_participants):
            return False

        self._reorder(apply_latin_square(self._trials, self._latin_groups, number))
        self._latin_applied = True
        return True

    def randomize_workflow(self) -> bool:
        """Fisher-Yates shuffle of the whole sequence."""
        if not self._can_reorder("randomize"):
            return False
        if len(self._trials) > 1:
            self._reorder(shuffle_trials(self._trials))
            self._log.info("Workflow randomized")
        return True

    def randomize_with_seed(self, seed: int) -> bool:
        """Reproducible shuffle of the whole sequence."""
        if not self._can_reorder("randomize"):
            return False
        if len(self._trials) > 1:
            self._reorder(seeded_shuffle(self._trials, seed))
            self._log.info(f"Workflow randomized with seed {seed}")
        return True

    def randomize_within_blocks(self, block_size: int) -> bool:
        """Shuffle inside contiguous blocks of ``block_size`` trials."""
        if not self._can_reorder("randomize"):
            return False
        if len(self._trials) > 1:
            self._reorder(block_shuffle(self._trials, block_size))
            self._log.info(f"Workflow randomized within blocks of {block_size}")
        return True

    def latin_square_groups(self) -> dict[str, int]:
        """Within-group id to number of positions under Latin-square ordering."""
        return {gid: len(positions) for gid, positions in self._latin_groups.items()}

    def ordering_debug_string(self) -> str:
        if not self._trials:
            return "No trials"
        return " -> ".join(trial.label or f"Trial {i}" for i, trial in enumerate(self._trials))

    # =========================================================================
    # Trial lifecycle
    # =========================================================================

    def _survey_gate(self, index: int) -> SurveyRequest | None:
        """Survey that must be completed before the trial at ``index`` starts."""
        trial = self._trials[index]
        node = trial.node
        if node.kind == TrialKind.SURVEY:
            return SurveyRequest(
                survey_id=node.survey_id or node.id,
                survey_name=node.survey_name or node.label,
                position=SurveyPosition.STANDALONE,
                trial_index=index,
                trial_id=node.id,
            )
        survey = node.attached_survey
        if survey and survey.position == SurveyPosition.BEFORE and self._cleared_before_index != index:
            return SurveyRequest(
                survey_id=survey.id,
                survey_name=survey.name,
                position=SurveyPosition.BEFORE,
                trial_index=index,
                trial_id=node.id,
            )
        return None

    def _require_survey(self, request: SurveyRequest) -> None:
        self._waiting_for_survey = True
        self._pending_survey = request.position
        self._survey_index = request.trial_index
        self._log.info(
            f"Survey '{request.survey_name or request.survey_id}' required",
            position=request.position.value,
            index=request.trial_index,
        )
        self.emit(WorkflowEvent.SURVEY_REQUIRED, request)

    def _begin(self, index: int, gated_index: int) -> FlattenedTrial | None:
        """Gate and start the trial at ``index``; None if a survey intervened.

        When gated, the cursor is parked at ``gated_index`` before
        SURVEY_REQUIRED goes out, so a handler that resolves the survey
        immediately sees the final cursor.
        """
        trial = self._trials[index]
        self.emit(WorkflowEvent.TRIAL_STARTING, trial)

        request = self._survey_gate(index)
        if request is not None:
            self._current_index = gated_index
            self._require_survey(request)
            return None

        self._phase = TrialPhase.IN_PROGRESS
        self._trial_start = time.monotonic()
        self._last_duration = 0.0
        self._cleared_before_index = None
        self._push_conditions(trial)

        self._log.with_trial(trial.id, index, len(self._trials)).bind(group=trial.parent_group_id).info(
            f"Started trial: {trial.label or 'Unlabeled'}"
        )
        self.emit(WorkflowEvent.TRIAL_STARTED, trial)
        return trial

    def _push_conditions(self, trial: FlattenedTrial) -> None:
        if self._condition_sink is None or not trial.conditions:
            return
        for name, value in trial.conditions.items():
            try:
                self._condition_sink.set_condition(name, value, trial_id=trial.id)
            except Exception:
                logger.exception(f"Condition sink rejected {name}={value}")
        logger.debug("Trial conditions: " + ", ".join(f"{k}={v}" for k, v in trial.conditions.items()))

    def _check_can_advance(self, action: str) -> bool:
        if not self._initialized:
            self._log.warning(f"Cannot {action}: workflow not initialized")
            return False
        if self._phase == TrialPhase.IN_PROGRESS:
            self._log.warning(f"Cannot {action}: current trial is still in progress")
            return False
        if self._waiting_for_survey:
            self._log.warning(f"Cannot {action}: waiting for {self._pending_survey.value} survey")
            return False
        return True

    def start_next_trial(self) -> FlattenedTrial | None:
        """Advance to and start the next trial.

        Returns None when a trial is in progress, a survey is pending, the
        sequence is exhausted, or the next position needs a survey first (in
        which case SURVEY_REQUIRED is emitted and the cursor stays put so the
        same position is retried after ``mark_survey_completed``).
        """
        if not self._check_can_advance("start next trial"):
            return None

        next_index = self._current_index + 1
        if next_index >= len(self._trials):
            self._current_index = len(self._trials)
            self._log.info("No more trials in workflow")
            return None

        self._current_index = next_index
        return self._begin(next_index, gated_index=next_index - 1)

    def advance_to_next_trial(self) -> FlattenedTrial | None:
        """Move the cursor to the next trial without starting it."""
        if not self._check_can_advance("advance to next trial"):
            return None

        self._current_index += 1
        if self._current_index >= len(self._trials):
            self._current_index = len(self._trials)
            self._log.info("No more trials in workflow")
            return None

        self._phase = TrialPhase.NOT_STARTED
        trial = self._trials[self._current_index]
        self._log.info(f"Advanced to trial {self._current_index + 1}/{len(self._trials)}: {trial.label or 'Unlabeled'}")
        return trial

    def start_trial(self) -> bool:
        """Start the trial under the cursor (after ``advance_to_next_trial``).

        Returns False if a survey must be completed first; call
        ``mark_survey_completed`` and then ``start_trial`` again.
        """
        if not self._check_can_advance("start trial"):
            return False
        if not 0 <= self._current_index < len(self._trials):
            self._log.warning("Cannot start trial: no trial is current; advance first")
            return False
        if self._phase != TrialPhase.NOT_STARTED:
            self._log.warning(f"Cannot start trial: current trial is already {self._phase.value}")
            return False
        return self._begin(self._current_index, gated_index=self._current_index) is not None

    def peek_next_trial(self) -> FlattenedTrial | None:
        """The trial after the cursor, without moving it."""
        next_index = self._current_index + 1
        if not self._initialized or not 0 <= next_index < len(self._trials):
            return None
        return self._trials[next_index]

    def _stop_clock(self) -> None:
        if self._trial_start is not None:
            self._last_duration = time.monotonic() - self._trial_start
        self._trial_start = None

    def complete_trial(self) -> bool:
        """Complete the trial in progress.

        Triggers an "after" survey when one is attached, otherwise saves a
        checkpoint of the current position.
        """
        if not self._initialized or self._phase != TrialPhase.IN_PROGRESS:
            self._log.warning("Cannot complete trial: no trial is in progress")
            return False

        self._stop_clock()
        self._phase = TrialPhase.COMPLETED
        trial = self._trials[self._current_index]
        self._log.with_trial(trial.id, self._current_index, len(self._trials)).info(
            f"Completed trial: {trial.label or 'Unknown'}",
            duration=f"{self._last_duration:.2f}s",
        )
        self.emit(WorkflowEvent.TRIAL_COMPLETED, trial)

        survey = trial.attached_survey
        if survey and survey.position == SurveyPosition.AFTER:
            self._require_survey(
                SurveyRequest(
                    survey_id=survey.id,
                    survey_name=survey.name,
                    position=SurveyPosition.AFTER,
                    trial_index=self._current_index,
                    trial_id=trial.id,
                )
            )
        else:
            self._save_checkpoint(self._current_index)
        return True

    def abort_trial(self, reason: str = "") -> bool:
        """Abort the trial in progress. No checkpoint is saved."""
        if not self._initialized or self._phase != TrialPhase.IN_PROGRESS:
            self._log.warning("Cannot abort trial: no trial is in progress")
            return False

        self._stop_clock()
        self._phase = TrialPhase.ABORTED
        self._last_abort_reason = reason or None
        trial = self._trials[self._current_index]
        self._log.with_trial(trial.id, self._current_index, len(self._trials)).bind(reason=reason or None).warning(
            f"Aborted trial: {trial.label or 'Unknown'}",
            duration=f"{self._last_duration:.2f}s",
        )
        self.emit(WorkflowEvent.TRIAL_ABORTED, trial)
        return True

    def mark_survey_completed(self) -> bool:
        """Resolve the pending survey.

        An "after" survey saves a checkpoint of its trial. A standalone survey
        counts as a completed position: the cursor moves onto it and a
        checkpoint is saved. A "before" survey clears its trial to start.
        """
        if not self._waiting_for_survey:
            self._log.warning("mark_survey_completed called but no survey is pending")
            return False

        position = self._pending_survey
        index = self._survey_index
        self._waiting_for_survey = False
        self._pending_survey = SurveyPosition.NONE
        self._survey_index = None
        self._log.info("Survey completed", position=position.value, index=index)

        if position == SurveyPosition.AFTER:
            self._save_checkpoint(self._current_index)
        elif position == SurveyPosition.STANDALONE and index is not None:
            self._current_index = index
            self._phase = TrialPhase.COMPLETED
            self._save_checkpoint(index)
        elif position == SurveyPosition.BEFORE:
            self._cleared_before_index = index
        return True

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def _save_checkpoint(self, index: int) -> None:
        participant_id = self._config.participant_id
        if not participant_id:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to run the remote save on; the next save carries the newer index
            self._checkpoints.save_local(participant_id, self._config.experiment_id, index)
            logger.debug(f"No running event loop; checkpoint {index} saved locally only")
            return
        task = loop.create_task(self._save_checkpoint_async(participant_id, index))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    async def _save_checkpoint_async(self, participant_id: str, index: int) -> None:
        saved = await self._checkpoints.save(participant_id, self._config.experiment_id, index)
        if saved:
            self.emit(WorkflowEvent.CHECKPOINT_SAVED, index)

    async def wait_for_checkpoints(self) -> None:
        """Wait until every scheduled checkpoint save has finished."""
        while self._pending_saves:
            results = await asyncio.gather(*list(self._pending_saves), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Checkpoint save failed: {result}")

    async def aclose(self) -> None:
        """Stop automation, flush checkpoint saves and close an owned client."""
        if self.is_automated_mode:
            self.stop_automated_workflow()
        await self.wait_for_checkpoints()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Queries
    # =========================================================================

    def trial_elapsed_time(self) -> float:
        """Seconds since the current trial started, 0.0 if none is running."""
        if self._phase != TrialPhase.IN_PROGRESS or self._trial_start is None:
            return 0.0
        return time.monotonic() - self._trial_start

    def get_condition_value(self, name: str) -> str | None:
        trial = self.current_trial
        return trial.conditions.get(name) if trial else None

    def current_conditions(self) -> Mapping[str, str]:
        trial = self.current_trial
        return dict(trial.conditions) if trial else {}

    def current_attached_survey(self) -> AttachedSurvey | None:
        trial = self.current_trial
        return trial.attached_survey if trial else None

    def is_current_item_survey(self) -> bool:
        if self._waiting_for_survey and self._pending_survey == SurveyPosition.STANDALONE:
            return True
        trial = self.current_trial
        return trial is not None and trial.kind == TrialKind.SURVEY

    def is_current_trial_in_group(self) -> bool:
        trial = self.current_trial
        return trial is not None and trial.in_group

    def current_group_id(self) -> str | None:
        trial = self.current_trial
        return trial.parent_group_id if trial else None

    def current_group_type(self) -> TrialKind | None:
        trial = self.current_trial
        return trial.parent_group_type if trial else None

    def trial_position_in_group(self) -> int:
        """1-based position of the current trial in its group, 0 if ungrouped."""
        if not self.is_current_trial_in_group():
            return 0
        rank = self._index.position_in_group(self._current_index)
        return rank + 1 if rank is not None else 0

    def group_trial_count(self) -> int:
        group_id = self.current_group_id()
        return self._index.size(group_id) if group_id else 0

    def is_first_trial_in_group(self) -> bool:
        return self.trial_position_in_group() == 1

    def is_last_trial_in_group(self) -> bool:
        position = self.trial_position_in_group()
        return position > 0 and position == self.group_trial_count()

    # =========================================================================
    # Automation
    # =========================================================================

    @property
    def driver(self) -> AutomatedDriver:
        if self._driver is None:
            self._driver = AutomatedDriver(self)
        return self._driver

    @property
    def is_automated_mode(self) -> bool:
        return self._driver is not None and self._driver.running

    def start_automated_workflow(self) -> bool:
        """Walk the sequence automatically; see AutomatedDriver."""
        return self.driver.start()

    def stop_automated_workflow(self) -> bool:
        return self.driver.stop()

    def complete_automated_trial(self) -> bool:
        return self.driver.complete_trial()
