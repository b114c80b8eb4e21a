"""Phone advisor: guided onboarding and streamed recommendations."""

from touchtrial.advisor.chat import AdvisorChat, ChatBusyError, ChatLockedError, ChatValidationError
from touchtrial.advisor.client import (
    AdvisorClient,
    AdvisorError,
    AdvisorQuotaExhausted,
    AdvisorRateLimited,
)
from touchtrial.advisor.onboarding import Onboarding, OnboardingError, OnboardingStep
from touchtrial.advisor.relay import AdvisorRelay, RelayError
from touchtrial.advisor.stream import ChatStreamAssembler

__all__ = [
    "AdvisorChat",
    "AdvisorClient",
    "AdvisorError",
    "AdvisorQuotaExhausted",
    "AdvisorRateLimited",
    "AdvisorRelay",
    "ChatBusyError",
    "ChatLockedError",
    "ChatStreamAssembler",
    "ChatValidationError",
    "Onboarding",
    "OnboardingError",
    "OnboardingStep",
    "RelayError",
]
