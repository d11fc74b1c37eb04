"""
TaxScope - Step Workflow
========================
State machine that walks a user through the analysis forms.

    profile -> scenario -> personal -> analysis              (personal)
    profile -> scenario -> business -> analysis              (business)
    profile -> scenario -> personal -> business -> analysis  (combined)

The workflow starts at `scenario` when a profile already exists.
`analysis` is terminal; `reset()` goes back to `profile` and drops every
stored payload. Step position is never persisted; `resume()` recomputes it
from the records that exist.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from models import (
    BusinessFinances,
    PersonalFinances,
    ScenarioSelection,
    TaxScenario,
    UserProfile,
    WorkflowState,
    WorkflowStep,
)

logger = logging.getLogger(__name__)


# Forms visited after the scenario step, per scenario
SCENARIO_PATHS: Dict[TaxScenario, List[WorkflowStep]] = {
    TaxScenario.PERSONAL: [WorkflowStep.PERSONAL],
    TaxScenario.BUSINESS: [WorkflowStep.BUSINESS],
    TaxScenario.COMBINED: [WorkflowStep.PERSONAL, WorkflowStep.BUSINESS],
}

# Model each step's payload is validated against
PAYLOAD_MODELS = {
    WorkflowStep.PROFILE: UserProfile,
    WorkflowStep.SCENARIO: ScenarioSelection,
    WorkflowStep.PERSONAL: PersonalFinances,
    WorkflowStep.BUSINESS: BusinessFinances,
}


def initial_step(has_profile: bool) -> WorkflowStep:
    """First step for a session."""
    return WorkflowStep.SCENARIO if has_profile else WorkflowStep.PROFILE


def next_step(step: WorkflowStep, scenario: Optional[TaxScenario]) -> WorkflowStep:
    """
    Pure transition table.

    Raises:
        ValueError: for the terminal step, or a form step without a scenario
    """
    if step == WorkflowStep.PROFILE:
        return WorkflowStep.SCENARIO
    if step == WorkflowStep.ANALYSIS:
        raise ValueError("analysis is the terminal step; use reset()")
    if scenario is None:
        raise ValueError(f"Cannot leave {step.value} without a scenario")

    path = SCENARIO_PATHS[scenario] + [WorkflowStep.ANALYSIS]
    if step == WorkflowStep.SCENARIO:
        return path[0]
    if step not in path:
        raise ValueError(f"{step.value} is not part of the {scenario.value} scenario")
    return path[path.index(step) + 1]


class StepWorkflow:
    """
    One user's position in the analysis forms plus the data collected so far.

    Not thread-safe; a session owns its workflow.
    """

    def __init__(self, has_profile: bool = False, profile: Optional[UserProfile] = None):
        self.profile: Optional[UserProfile] = profile
        self.scenario: Optional[TaxScenario] = None
        self.personal: Optional[PersonalFinances] = None
        self.business: Optional[BusinessFinances] = None
        self.current_step = initial_step(has_profile or profile is not None)
        self.visited: List[WorkflowStep] = [self.current_step]

    @classmethod
    def resume(
        cls,
        profile: Optional[UserProfile] = None,
        scenario: Optional[Union[TaxScenario, str]] = None,
        personal: Optional[PersonalFinances] = None,
        business: Optional[BusinessFinances] = None,
    ) -> "StepWorkflow":
        """
        Rebuild a workflow from existing records.

        Replays each available payload through advance() and stops at the
        first step whose data is missing.
        """
        workflow = cls(profile=profile)
        if profile is None or scenario is None:
            return workflow

        workflow.advance(WorkflowStep.SCENARIO, scenario)
        records = {WorkflowStep.PERSONAL: personal, WorkflowStep.BUSINESS: business}
        while workflow.current_step in records:
            payload = records[workflow.current_step]
            if payload is None:
                break
            workflow.advance(workflow.current_step, payload)
        return workflow

    @property
    def is_complete(self) -> bool:
        return self.current_step == WorkflowStep.ANALYSIS

    def _coerce_step(self, step: Union[WorkflowStep, str]) -> WorkflowStep:
        try:
            return WorkflowStep(step)
        except ValueError:
            raise ValueError(f"Unknown workflow step: {step!r}")

    def _coerce_payload(self, step: WorkflowStep, payload: Any):
        model = PAYLOAD_MODELS[step]
        if step == WorkflowStep.SCENARIO:
            if isinstance(payload, ScenarioSelection):
                return payload.scenario
            if not isinstance(payload, dict):
                payload = {"scenario": payload}
            return ScenarioSelection.model_validate(payload).scenario
        if isinstance(payload, model):
            return payload
        return model.model_validate(payload)

    def advance(self, step: Union[WorkflowStep, str], payload: Any) -> WorkflowStep:
        """
        Store `payload` under `step` and move to the next step.

        Args:
            step: The step being completed; must be the current step
            payload: Model instance or dict for the step's form, or a
                scenario value for the scenario step

        Returns:
            The new current step

        Raises:
            ValueError: unknown step, out-of-order step, or the terminal step
            ValidationError: the payload does not validate, including an
                unknown scenario value
        """
        step = self._coerce_step(step)
        if step == WorkflowStep.ANALYSIS:
            raise ValueError("analysis is the terminal step; use reset()")
        if step != self.current_step:
            raise ValueError(
                f"Cannot complete {step.value} while the current step is {self.current_step.value}"
            )

        value = self._coerce_payload(step, payload)
        if step == WorkflowStep.PROFILE:
            self.profile = value
        elif step == WorkflowStep.SCENARIO:
            self.scenario = value
            # A new scenario drops forms collected for a previous one
            self.personal = None
            self.business = None
        elif step == WorkflowStep.PERSONAL:
            self.personal = value
        elif step == WorkflowStep.BUSINESS:
            self.business = value

        self.current_step = next_step(step, self.scenario)
        self.visited.append(self.current_step)
        logger.info(f"Workflow advanced {step.value} -> {self.current_step.value}")
        return self.current_step

    def reset(self) -> WorkflowStep:
        """Return to the profile step with every collected payload cleared."""
        self.profile = None
        self.scenario = None
        self.personal = None
        self.business = None
        self.current_step = WorkflowStep.PROFILE
        self.visited = [WorkflowStep.PROFILE]
        logger.info("Workflow reset")
        return self.current_step

    def snapshot(self) -> WorkflowState:
        return WorkflowState(
            current_step=self.current_step,
            scenario=self.scenario,
            visited=list(self.visited),
            profile=self.profile,
            personal=self.personal,
            business=self.business,
            is_complete=self.is_complete,
        )
