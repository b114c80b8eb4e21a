"""Onboarding step definitions and their JSONL loader.

The advisor's guided questions (budget, priorities, brands) live in
``data/onboarding.jsonl`` so copy and options can change without touching
the state machine.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


class OnboardingOption(BaseModel):
    """One selectable chip."""

    key: str
    label: str
    summary: str = ""                      # Phrase used in the summary request; falls back to label


class OnboardingStepDef(BaseModel):
    """One guided question."""

    id: str
    prompt: str                            # Assistant message that asks the question
    multi_select: bool = False
    exclusive_option: str | None = None    # Selecting this key clears every other selection
    options: list[OnboardingOption] = []

    def option(self, key: str) -> Optional[OnboardingOption]:
        for opt in self.options:
            if opt.key == key:
                return opt
        return None

    def labels(self, keys: list[str]) -> list[str]:
        """Labels for the given keys, in the order they were selected."""
        return [opt.label for opt in (self.option(key) for key in keys) if opt is not None]


class OnboardingFlowDef(BaseModel):
    """The whole guided flow."""

    id: str
    greeting: str = ""
    summary_template: str = ""             # str.format with {budget}, {priorities}, {brands}
    steps: dict[str, OnboardingStepDef] = {}


_DEFAULT_PATH = Path(__file__).resolve().parent / "data" / "onboarding.jsonl"


def load_flow_jsonl(path: str | Path = _DEFAULT_PATH) -> OnboardingFlowDef:
    """Load the first flow found in a JSONL file."""
    path = Path(path)
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        return _parse_flow(json.loads(line))

    raise ValueError(f"No onboarding flow found in {path}")


def _parse_flow(data: dict) -> OnboardingFlowDef:
    steps: dict[str, OnboardingStepDef] = {}
    for step_id, step_data in data.get("steps", {}).items():
        step_data.setdefault("id", step_id)
        steps[step_id] = OnboardingStepDef(**step_data)

    data["steps"] = steps
    flow = OnboardingFlowDef(**data)

    for required in ("budget", "priority", "brand"):
        if required not in flow.steps:
            raise ValueError(f"Onboarding flow {flow.id!r} is missing step {required!r}")
    brand = flow.steps["brand"]
    if brand.exclusive_option and brand.option(brand.exclusive_option) is None:
        raise ValueError(f"Exclusive option {brand.exclusive_option!r} is not a brand option")
    return flow
