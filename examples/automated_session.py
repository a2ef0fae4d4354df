"""trialflow example: an automated participant session.

Run: TRIALFLOW_BASE_URL=https://... TRIALFLOW_API_KEY=... \
     TRIALFLOW_EXPERIMENT_ID=exp-1 TRIALFLOW_PARTICIPANT_ID=p-42 \
     TRIALFLOW_PARTICIPANT_NUMBER=3 python examples/automated_session.py

Without TRIALFLOW_BASE_URL the session runs against a bundled document.
"""

import asyncio
import logging
import os

from trialflow import (
    ConditionCache,
    SurveyRequest,
    TrialWorkflow,
    WorkflowConfig,
    WorkflowEvent,
    configure_logging,
)

DEMO_DOCUMENT = [
    {"id": "consent", "type": "consent"},
    {
        "id": "practice",
        "type": "standalone",
        "label": "Practice",
        "conditions": {"phase": "practice"},
        "attachedSurvey": {"id": "nasa-tlx", "name": "Workload", "position": "after"},
    },
    {
        "id": "speeds",
        "type": "within",
        "label": "Speed block",
        "withinSubjectsIVs": ["speed"],
        "trialOrdering": "latin_square",
        "childTrials": [
            {"id": "slow", "type": "standalone", "label": "Slow", "conditions": {"speed": "slow"}},
            {"id": "medium", "type": "standalone", "label": "Medium", "conditions": {"speed": "medium"}},
            {"id": "fast", "type": "standalone", "label": "Fast", "conditions": {"speed": "fast"}},
        ],
    },
    {"id": "exit", "type": "survey", "label": "Exit questionnaire", "surveyId": "exit-q"},
]


async def run_stimulus(workflow: TrialWorkflow, conditions: ConditionCache) -> None:
    """Stand-in for the scene logic of one trial."""
    await asyncio.sleep(0.1)
    print(f"  ran trial with speed={conditions.get('speed')}")
    workflow.complete_automated_trial()


async def main():
    configure_logging(logging.INFO)

    os.environ.setdefault("TRIALFLOW_EXPERIMENT_ID", "demo")
    os.environ.setdefault("TRIALFLOW_PARTICIPANT_NUMBER", "1")
    config = WorkflowConfig.from_env()
    conditions = ConditionCache()

    if config.base_url:
        workflow = TrialWorkflow.connect(config, condition_sink=conditions)
        ready = await workflow.initialize()
    else:
        workflow = TrialWorkflow(config, condition_sink=conditions)
        ready = workflow.load_document(DEMO_DOCUMENT)

    if not ready:
        print("Workflow could not be initialized")
        return

    print(f"Order: {workflow.ordering_debug_string()}")

    def on_survey(request: SurveyRequest):
        print(f"  survey '{request.survey_name}' ({request.position.value})")
        asyncio.get_running_loop().call_later(0.2, workflow.mark_survey_completed)

    workflow.on(WorkflowEvent.SURVEY_REQUIRED, on_survey)
    workflow.on(WorkflowEvent.TRIAL_READY, lambda trial: asyncio.create_task(run_stimulus(workflow, conditions)))
    workflow.on(WorkflowEvent.WORKFLOW_COMPLETED, lambda _: print("Session complete"))

    workflow.start_automated_workflow()
    await workflow.driver.wait()
    await workflow.aclose()


if __name__ == "__main__":
    asyncio.run(main())
