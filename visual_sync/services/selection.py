"""Selection Reconciler: which build is the active story viewed on."""

from __future__ import annotations

from enum import Enum
from typing import Callable, Iterable, Optional

from visual_sync.logger import get_logger, log_with_context
from visual_sync.models.build import Build, BuildStatus, TestRecord
from visual_sync.models.revision import RevisionContext, SelectedBuildInfo

logger = get_logger()

SelectionUpdate = Callable[[Optional[SelectedBuildInfo]], Optional[SelectedBuildInfo]]


class SelectionState(str, Enum):
    UNSELECTED = "unselected"
    SELECTED_MATCHING_LATEST = "selected_matching_latest"
    SELECTED_PINNED = "selected_pinned"


def is_selectable(candidate: Build, context: RevisionContext) -> bool:
    """A build is selectable unless it was committed after the local checkout."""
    return candidate.committed_at <= context.committed_at


def _story_tests_captured(story_tests: Iterable[TestRecord]) -> bool:
    tests = list(story_tests)
    if not tests:
        return False
    return all(
        test.result is not None and all(c.result is not None for c in test.comparisons)
        for test in tests
    )


def is_ready(candidate: Build, story_tests: Iterable[TestRecord] = ()) -> bool:
    """Terminal builds are ready; an in-progress one is once the story's tests are captured."""

    if candidate.phase in ("completed", "failed"):
        return True
    return candidate.status == BuildStatus.IN_PROGRESS and _story_tests_captured(story_tests)


def should_switch_to_last_build_on_branch(
    candidate: Build, context: RevisionContext, story_tests: Iterable[TestRecord] = ()
) -> bool:
    return is_selectable(candidate, context) and is_ready(candidate, story_tests)


def is_outdated(build: Build, context: RevisionContext) -> bool:
    """The build was captured from a different working tree than the one checked out."""
    return build.uncommitted_hash != context.uncommitted_hash


class OutdatedFlag:
    """Publishes the outdated flag whenever its value changes."""

    def __init__(self, publish: Callable[[bool], None]) -> None:
        self._publish = publish
        self._value: bool | None = None

    @property
    def value(self) -> bool | None:
        return self._value

    def update(self, build: Build | None, context: RevisionContext) -> bool:
        outdated = build is not None and is_outdated(build, context)
        if outdated != self._value:
            self._value = outdated
            self._publish(outdated)
        return outdated


class SelectionReconciler:
    """Owns the selected (story, build) pair.

    Every change goes through ``_update`` so there is exactly one writer and
    each write replaces the previous value instead of mutating it.
    """

    def __init__(self) -> None:
        self._selection: SelectedBuildInfo | None = None
        self._last_build_id: str | None = None

    @property
    def selection(self) -> SelectedBuildInfo | None:
        return self._selection

    @property
    def last_build_id(self) -> str | None:
        return self._last_build_id

    @property
    def state(self) -> SelectionState:
        if self._selection is None or self._selection.build_id is None:
            return SelectionState.UNSELECTED
        if self._last_build_id is not None and self._selection.build_id == self._last_build_id:
            return SelectionState.SELECTED_MATCHING_LATEST
        return SelectionState.SELECTED_PINNED

    def _update(self, update: SelectionUpdate) -> SelectedBuildInfo | None:
        previous = self._selection
        self._selection = update(previous)
        if self._selection != previous:
            log_with_context(
                logger,
                story_id=self._selection.story_id if self._selection else None,
                build_id=self._selection.build_id if self._selection else None,
            ).info(f"Selection changed ({self.state.value})")
        return self._selection

    def reconcile(
        self,
        story_id: str,
        last_build: Build | None,
        context: RevisionContext,
        story_tests: Iterable[TestRecord] = (),
    ) -> SelectedBuildInfo | None:
        """Bring the selection in line with the active story and the latest build on branch."""

        if last_build is not None:
            self._last_build_id = last_build.id
        tests = tuple(story_tests)

        def _reconcile(current: SelectedBuildInfo | None) -> SelectedBuildInfo | None:
            if current is not None and current.story_id != story_id:
                current = None
            if current is None:
                if last_build is None:
                    return None
                return SelectedBuildInfo(story_id=story_id, build_id=last_build.id)
            if (
                last_build is not None
                and current.build_id != last_build.id
                and should_switch_to_last_build_on_branch(last_build, context, tests)
            ):
                return SelectedBuildInfo(story_id=story_id, build_id=last_build.id)
            return current

        return self._update(_reconcile)

    def switch_to_last_build_on_branch(
        self, story_id: str, last_build: Build | None, context: RevisionContext
    ) -> bool:
        """User asked for the latest build; honoured only if it isn't ahead of the checkout."""

        if last_build is None or not is_selectable(last_build, context):
            return False
        self._last_build_id = last_build.id
        self._update(lambda _: SelectedBuildInfo(story_id=story_id, build_id=last_build.id))
        return True

    def pin(self, story_id: str, build_id: str) -> SelectedBuildInfo | None:
        return self._update(lambda _: SelectedBuildInfo(story_id=story_id, build_id=build_id))
