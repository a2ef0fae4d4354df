"""AutomatedDriver - walks a TrialWorkflow end to end on the event loop.

The driver starts each trial, emits TRIAL_READY and waits for the session
code to report the trial logic as done. Surveys are left to whoever handles
SURVEY_REQUIRED; the driver polls until they are marked completed.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from ..types import WorkflowEvent

if TYPE_CHECKING:
    from .workflow import TrialWorkflow

logger = logging.getLogger(__name__)


class AutomatedDriver:
    """Cooperative loop over a workflow.

    Example:
        driver = AutomatedDriver(workflow)
        workflow.on(WorkflowEvent.TRIAL_READY, lambda trial: run_stimulus(trial, driver.complete_trial))
        driver.start()
        await driver.wait()
    """

    def __init__(self, workflow: "TrialWorkflow", poll_interval: float = 0.01):
        self._workflow = workflow
        self._poll_interval = poll_interval
        self._running = False
        self._awaiting_trial_logic = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def awaiting_trial_logic(self) -> bool:
        return self._awaiting_trial_logic

    def start(self) -> bool:
        """Start the loop on the running event loop.

        Returns:
            False if already running, the workflow is not initialized, the
            sequence is empty (WORKFLOW_COMPLETED is emitted), or no event
            loop is running.
        """
        if self._running:
            logger.warning("Automated workflow is already running")
            return False
        if not self._workflow.initialized:
            logger.warning("Cannot start automated workflow: workflow not initialized")
            return False
        if self._workflow.total_trial_count == 0:
            logger.warning("No trials in workflow; nothing to automate")
            self._workflow.emit(WorkflowEvent.WORKFLOW_COMPLETED)
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Automated workflow needs a running event loop")
            return False

        self._running = True
        self._awaiting_trial_logic = False
        self._task = loop.create_task(self._run())
        logger.info(f"Starting automated workflow with {self._workflow.total_trial_count} items")
        return True

    def stop(self) -> bool:
        """Stop scheduling new trials.

        The current trial and any pending survey keep their state so manual
        control can take over.
        """
        if not self._running:
            logger.warning("Automated workflow is not running")
            return False
        self._running = False
        self._awaiting_trial_logic = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
        logger.info("Automated workflow stopped")
        return True

    def complete_trial(self) -> bool:
        """Report the current trial's logic as done and complete it."""
        if not self._running:
            logger.warning("complete_trial called but automated mode is not active")
            return False
        if not self._awaiting_trial_logic:
            logger.warning("complete_trial called but no trial is waiting for completion")
            return False
        completed = self._workflow.complete_trial()
        self._awaiting_trial_logic = False
        return completed

    async def wait(self, timeout: float | None = None) -> None:
        """Wait for the loop to finish (exhaustion or stop)."""
        task = self._task
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)

    async def _run(self) -> None:
        exhausted = await self._loop()
        if self._task is not asyncio.current_task():
            return
        self._running = False
        self._awaiting_trial_logic = False
        self._task = None
        if exhausted:
            logger.info("Automated workflow completed")
            self._workflow.emit(WorkflowEvent.WORKFLOW_COMPLETED)

    async def _loop(self) -> bool:
        """Drive trials until exhausted (True) or stopped (False)."""
        workflow = self._workflow

        if workflow.is_trial_in_progress:
            self._awaiting_trial_logic = True
            workflow.emit(WorkflowEvent.TRIAL_READY, workflow.current_trial)

        while self._running:
            if self._awaiting_trial_logic and not workflow.is_trial_in_progress:
                # Completed or aborted through the workflow directly
                self._awaiting_trial_logic = False

            if workflow.is_waiting_for_survey or self._awaiting_trial_logic:
                await asyncio.sleep(self._poll_interval)
                continue

            trial = workflow.start_next_trial()
            if trial is None:
                if workflow.is_trial_in_progress:
                    self._awaiting_trial_logic = True
                    workflow.emit(WorkflowEvent.TRIAL_READY, workflow.current_trial)
                    continue
                # A survey handler may resolve the gate before we get here
                if workflow.is_waiting_for_survey or workflow.has_more_trials:
                    await asyncio.sleep(0)
                    continue
                return True

            self._awaiting_trial_logic = True
            workflow.emit(WorkflowEvent.TRIAL_READY, trial)
            await asyncio.sleep(0)

        return False
