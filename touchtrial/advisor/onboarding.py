"""Guided onboarding that gates the advisor's free-text chat.

    budget --(pick one)--> priority --(pick >=1, confirm)--> brand --(pick >=1, confirm)--> done

Each transition yields a synthetic user message echoing the selection and
the assistant prompt for the next step. The flow only moves forward.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional

from touchtrial.models import ChatMessage
from touchtrial.advisor.steps import OnboardingFlowDef, OnboardingStepDef, load_flow_jsonl

log = logging.getLogger("touchtrial.advisor.onboarding")


class OnboardingStep(str, enum.Enum):
    BUDGET = "budget"
    PRIORITY = "priority"
    BRAND = "brand"
    DONE = "done"


class OnboardingError(ValueError):
    """Unknown option, or an action that doesn't belong to the current step."""


_FLOW: Optional[OnboardingFlowDef] = None


def default_flow() -> OnboardingFlowDef:
    """The packaged flow definition, loaded once."""
    global _FLOW
    if _FLOW is None:
        _FLOW = load_flow_jsonl()
    return _FLOW


class Onboarding:
    def __init__(self, flow: OnboardingFlowDef | None = None) -> None:
        self.flow = flow or default_flow()
        self.step = OnboardingStep.BUDGET
        self.budget: str = ""
        self.priorities: list[str] = []
        self.brands: list[str] = []

    @property
    def can_chat(self) -> bool:
        return self.step == OnboardingStep.DONE

    @property
    def current_def(self) -> Optional[OnboardingStepDef]:
        if self.step == OnboardingStep.DONE:
            return None
        return self.flow.steps[self.step.value]

    def opening_messages(self) -> list[ChatMessage]:
        """Greeting plus the first question."""
        messages = []
        if self.flow.greeting:
            messages.append(ChatMessage(role="assistant", content=self.flow.greeting))
        messages.append(ChatMessage(role="assistant", content=self.flow.steps["budget"].prompt))
        return messages

    # ── Budget ────────────────────────────────────────────────

    def choose_budget(self, key: str) -> list[ChatMessage]:
        step_def = self._expect(OnboardingStep.BUDGET)
        option = self._option(step_def, key)
        self.budget = option.key
        self.step = OnboardingStep.PRIORITY
        log.debug("Onboarding budget=%s", key)
        return [
            ChatMessage(role="user", content=option.label),
            ChatMessage(role="assistant", content=self.flow.steps["priority"].prompt),
        ]

    # ── Priorities ────────────────────────────────────────────

    def toggle_priority(self, key: str) -> list[str]:
        step_def = self._expect(OnboardingStep.PRIORITY)
        self._option(step_def, key)
        if key in self.priorities:
            self.priorities = [k for k in self.priorities if k != key]
        else:
            self.priorities = [*self.priorities, key]
        return list(self.priorities)

    def confirm_priorities(self) -> list[ChatMessage]:
        """Advance to brands. With nothing selected, stays put and returns []."""
        step_def = self._expect(OnboardingStep.PRIORITY)
        if not self.priorities:
            return []
        self.step = OnboardingStep.BRAND
        return [
            ChatMessage(role="user", content=", ".join(step_def.labels(self.priorities))),
            ChatMessage(role="assistant", content=self.flow.steps["brand"].prompt),
        ]

    # ── Brands ────────────────────────────────────────────────

    def toggle_brand(self, key: str) -> list[str]:
        """Toggle a brand; the exclusive option and specific brands displace each other."""
        step_def = self._expect(OnboardingStep.BRAND)
        self._option(step_def, key)
        exclusive = step_def.exclusive_option

        if key in self.brands:
            self.brands = [k for k in self.brands if k != key]
        elif exclusive and key == exclusive:
            self.brands = [key]
        else:
            self.brands = [k for k in self.brands if k != exclusive] + [key]
        return list(self.brands)

    def confirm_brands(self) -> list[ChatMessage]:
        """Finish onboarding. With nothing selected, stays put and returns [].

        Only the echo of the selection is returned; the advisor's reply to
        the summary request is the next assistant turn.
        """
        step_def = self._expect(OnboardingStep.BRAND)
        if not self.brands:
            return []
        self.step = OnboardingStep.DONE
        log.info("Onboarding complete: budget=%s priorities=%s brands=%s",
                 self.budget, self.priorities, self.brands)
        return [ChatMessage(role="user", content=", ".join(step_def.labels(self.brands)))]

    # ── Summary ───────────────────────────────────────────────

    def summary(self) -> str:
        """Structured request text covering all three selections."""
        if self.step != OnboardingStep.DONE:
            raise OnboardingError("Onboarding is not finished")

        def phrases(step_id: str, keys: list[str]) -> str:
            step_def = self.flow.steps[step_id]
            out = []
            for key in keys:
                opt = step_def.option(key)
                if opt is not None:
                    out.append(opt.summary or opt.label)
            return ", ".join(out)

        return self.flow.summary_template.format(
            budget=phrases("budget", [self.budget]),
            priorities=phrases("priority", self.priorities),
            brands=phrases("brand", self.brands),
        )

    def to_dict(self) -> dict:
        step_def = self.current_def
        return {
            "step": self.step.value,
            "can_chat": self.can_chat,
            "budget": self.budget or None,
            "priorities": list(self.priorities),
            "brands": list(self.brands),
            "prompt": step_def.prompt if step_def else None,
            "multi_select": step_def.multi_select if step_def else False,
            "options": [o.model_dump(include={"key", "label"}) for o in step_def.options] if step_def else [],
        }

    # ── Internal ──────────────────────────────────────────────

    def _expect(self, step: OnboardingStep) -> OnboardingStepDef:
        if self.step != step:
            raise OnboardingError(f"Expected onboarding step {step.value!r}, currently {self.step.value!r}")
        return self.flow.steps[step.value]

    @staticmethod
    def _option(step_def: OnboardingStepDef, key: str):
        option = step_def.option(key)
        if option is None:
            raise OnboardingError(f"Unknown {step_def.id} option {key!r}")
        return option
