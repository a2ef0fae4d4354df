"""Workflow state machine and automated driver."""

from .driver import AutomatedDriver
from .workflow import TrialSource, TrialWorkflow

__all__ = ["AutomatedDriver", "TrialSource", "TrialWorkflow"]
