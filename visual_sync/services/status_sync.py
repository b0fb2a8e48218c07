"""Status Synchronizer: turn build tests into the sidebar status map and publish changes."""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from visual_sync.constants import STATUS_TITLE
from visual_sync.logger import get_logger
from visual_sync.models.build import ComparisonResult, TestRecord, TestStatus
from visual_sync.models.revision import StatusEntry, StatusUpdate, StatusValue

logger = get_logger()

PublishStatus = Callable[[StatusUpdate], None]
StatusFilter = Callable[[Optional[StatusEntry]], bool]

_STATUS_RANK: Dict[str, int] = {"none": 0, "warn": 1, "error": 2}
_ERROR_TEST_STATUSES = {TestStatus.BROKEN, TestStatus.FAILED, TestStatus.DENIED}
_CHANGE_RESULTS = {ComparisonResult.ADDED, ComparisonResult.CHANGED, ComparisonResult.FIXED}


def status_for_test(test: TestRecord) -> StatusValue:
    if test.result == ComparisonResult.CAPTURE_ERROR or test.status in _ERROR_TEST_STATUSES:
        return "error"
    if test.status == TestStatus.PENDING and test.result in _CHANGE_RESULTS:
        return "warn"
    return "none"


def aggregate_status(statuses: Iterable[StatusValue]) -> StatusValue:
    """Most severe status wins: error, then warn, then none."""

    worst: StatusValue = "none"
    for status in statuses:
        if _STATUS_RANK[status] > _STATUS_RANK[worst]:
            worst = status
    return worst


def _describe(tests: Sequence[TestRecord]) -> str:
    errors = sum(1 for test in tests if status_for_test(test) == "error")
    changes = sum(1 for test in tests if status_for_test(test) == "warn")
    if errors:
        return f"{errors} {'error' if errors == 1 else 'errors'}"
    if changes:
        return f"{changes} {'change' if changes == 1 else 'changes'}"
    return "No changes"


def compute_status_update(tests: Iterable[TestRecord]) -> StatusUpdate:
    """Group tests by story and map each story to its aggregate status."""

    by_story: Dict[str, List[TestRecord]] = defaultdict(list)
    for test in tests:
        by_story[test.story_id].append(test)

    update: StatusUpdate = {}
    for story_id, story_tests in by_story.items():
        update[story_id] = StatusEntry(
            status=aggregate_status(status_for_test(test) for test in story_tests),
            description=_describe(story_tests),
            url=next((test.web_url for test in story_tests if test.web_url), None),
            title=STATUS_TITLE,
        )
    return update


def clear_status_update(previous: Mapping[str, object]) -> StatusUpdate:
    return {story_id: None for story_id in previous}


class StatusSynchronizer:
    """Publishes full replacement status maps, skipping repeats of the last one."""

    def __init__(self, publish: PublishStatus) -> None:
        self._publish = publish
        self._computed: StatusUpdate | None = None
        self._known: StatusUpdate = {}

    @property
    def state(self) -> StatusUpdate:
        """The statuses currently shown, without the cleared entries."""
        return dict(self._known)

    def sync(self, tests: Iterable[TestRecord] | None) -> bool:
        """Publish the status map for ``tests``; ``None`` clears every known entry.

        Returns True when something was published.
        """

        computed = compute_status_update(tests or ())
        if computed == self._computed:
            logger.trace("Status map unchanged; not publishing")
            return False

        update: StatusUpdate = {**clear_status_update(self._known), **computed}
        self._computed = computed
        self._known = dict(computed)
        logger.debug(
            f"Publishing status map ({len(computed)} stories, "
            f"{sum(1 for value in update.values() if value is None)} cleared)"
        )
        self._publish(update)
        return True


def count_statuses(state: Mapping[str, Optional[StatusEntry]]) -> Dict[str, int]:
    counts = {"warn": 0, "error": 0}
    for entry in state.values():
        if entry is not None and entry.status in counts:
            counts[entry.status] += 1
    return counts


def _match_all(entry: Optional[StatusEntry]) -> bool:
    return True


def build_status_filter(
    state: Mapping[str, Optional[StatusEntry]], *, show_warnings: bool, show_errors: bool
) -> StatusFilter:
    """Sidebar filter: only stories with changes and/or errors, when any exist."""

    counts = count_statuses(state)
    wanted: set[str] = set()
    if show_warnings and counts["warn"]:
        wanted.add("warn")
    if show_errors and counts["error"]:
        wanted.add("error")
    if not wanted:
        return _match_all

    def _filter(entry: Optional[StatusEntry]) -> bool:
        return entry is not None and entry.status in wanted

    return _filter
