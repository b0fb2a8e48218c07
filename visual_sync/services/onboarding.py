"""First-run guidance: onboarding screen, then an optional walkthrough."""

from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable

from visual_sync.graphql_client import GraphQLClient, GraphQLClientError
from visual_sync.logger import get_logger, log_failure
from visual_sync.queries import MUTATION_UPDATE_USER_PREFERENCES
from visual_sync.utils.invariants import InvariantViolation

logger = get_logger()


class OnboardingState(str, Enum):
    NOT_STARTED = "not_started"
    ONBOARDING = "onboarding"
    WALKTHROUGH = "walkthrough"
    COMPLETED = "completed"
    DISMISSED = "dismissed"


class OnboardingPreference(str, Enum):
    COMPLETED = "COMPLETED"
    DISMISSED = "DISMISSED"


_TERMINAL = {OnboardingState.COMPLETED, OnboardingState.DISMISSED}

PersistPreference = Callable[[OnboardingPreference], Awaitable[None]]


class UserPreferencesClient:
    def __init__(self, client: GraphQLClient) -> None:
        self._client = client

    async def update_onboarding(self, preference: OnboardingPreference) -> None:
        result = await self._client.execute(
            MUTATION_UPDATE_USER_PREFERENCES,
            {"input": {"vtaOnboarding": preference.value}},
            operation_name="UpdateUserPreferences",
        )
        if result.error is not None:
            raise result.error


class OnboardingMachine:
    """Tracks the onboarding flow for one session.

    Once the flow reaches COMPLETED or DISMISSED it stays there, whatever
    the override flag does afterwards.
    """

    def __init__(self, persist: PersistPreference) -> None:
        self._persist = persist
        self._state = OnboardingState.NOT_STARTED

    @property
    def state(self) -> OnboardingState:
        return self._state

    @property
    def is_finished(self) -> bool:
        return self._state in _TERMINAL

    def observe(
        self,
        *,
        loaded: bool,
        has_error: bool,
        preference: OnboardingPreference | None,
        override: bool = False,
    ) -> OnboardingState:
        """Enter onboarding once build data is in and the user has not finished it before."""

        if self._state != OnboardingState.NOT_STARTED:
            return self._state
        if not loaded or has_error:
            return self._state
        if override or preference is None:
            logger.info(f"Entering onboarding (override={override})")
            self._state = OnboardingState.ONBOARDING
        return self._state

    def start_walkthrough(self) -> OnboardingState:
        self._expect(OnboardingState.ONBOARDING, "start the walkthrough")
        self._state = OnboardingState.WALKTHROUGH
        return self._state

    async def complete(self) -> OnboardingState:
        self._expect(OnboardingState.WALKTHROUGH, "complete the walkthrough")
        return await self._finish(OnboardingState.COMPLETED, OnboardingPreference.COMPLETED)

    async def skip(self) -> OnboardingState:
        self._expect(OnboardingState.WALKTHROUGH, "skip the walkthrough")
        return await self._finish(OnboardingState.DISMISSED, OnboardingPreference.DISMISSED)

    async def dismiss(self) -> OnboardingState:
        self._expect(OnboardingState.ONBOARDING, "dismiss onboarding")
        return await self._finish(OnboardingState.DISMISSED, OnboardingPreference.DISMISSED)

    def _expect(self, expected: OnboardingState, action: str) -> None:
        if self._state != expected:
            raise InvariantViolation(
                f"Cannot {action} while onboarding is {self._state.value}; expected {expected.value}."
            )

    async def _finish(self, state: OnboardingState, preference: OnboardingPreference) -> OnboardingState:
        self._state = state
        try:
            await self._persist(preference)
        except GraphQLClientError as exc:
            # The flow stays finished for this session even if the preference did not save.
            log_failure(logger, "Failed to save onboarding preference", exc, preference=preference.value)
        return self._state
