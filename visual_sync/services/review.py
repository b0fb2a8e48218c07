"""Review Protocol: submit accept/unaccept decisions for tests."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Set

from visual_sync.graphql_client import GraphQLClient
from visual_sync.logger import get_logger, log_failure, log_success, log_timing, log_with_context
from visual_sync.models.build import Build, TestStatus
from visual_sync.queries import MUTATION_REVIEW_TEST
from visual_sync.utils.invariants import InvariantViolation

logger = get_logger()


class ReviewDecision(str, Enum):
    ACCEPTED = "ACCEPTED"
    PENDING = "PENDING"


class ReviewBatch(str, Enum):
    SPEC = "SPEC"
    STORY = "STORY"
    BUILD = "BUILD"


class ReviewError(RuntimeError):
    """Base class for every way a review can fail."""

    def __init__(self, message: str, *, test_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.test_id = test_id


class ReviewPreconditionError(ReviewError):
    """The review was rejected locally; nothing was sent to the service."""


class ReviewInProgressError(ReviewPreconditionError):
    pass


class BuildSupersededError(ReviewError):
    def __init__(self, message: str, *, build_id: str | None, test_id: str | None = None):
        super().__init__(message, test_id=test_id)
        self.build_id = build_id


class TestUnreviewableError(ReviewError):
    __test__: ClassVar[bool] = False


class UserError(ReviewError):
    pass


class ReviewRequestError(ReviewError):
    """Transport or GraphQL failure while submitting the review."""

    def __init__(self, message: str, *, test_id: str | None, cause: Exception):
        super().__init__(message, test_id=test_id)
        self.cause = cause


@dataclass
class ReviewOutcome:
    ok: bool
    test_id: str
    decision: ReviewDecision
    batch: ReviewBatch
    error: ReviewError | None = None
    updated_tests: Dict[str, TestStatus] = field(default_factory=dict)


SuccessCallback = Callable[[ReviewOutcome], Awaitable[None] | None]
ErrorCallback = Callable[[ReviewError, ReviewDecision], Awaitable[None] | None]


def _user_error(payload: Dict[str, Any], test_id: str) -> ReviewError:
    typename = payload.get("__typename")
    message = payload.get("message") or "The review could not be saved."
    if typename == "BuildSupersededError":
        build_id = (payload.get("build") or {}).get("id")
        return BuildSupersededError(message, build_id=build_id, test_id=test_id)
    if typename == "TestUnreviewableError":
        return TestUnreviewableError(message, test_id=(payload.get("test") or {}).get("id") or test_id)
    return UserError(message, test_id=test_id)


def parse_review_payload(data: Dict[str, Any] | None, test_id: str) -> tuple[Dict[str, TestStatus], ReviewError | None]:
    """Split a reviewTest payload into updated test statuses and the first user error."""

    payload = (data or {}).get("reviewTest") or {}
    user_errors: List[Dict[str, Any]] = payload.get("userErrors") or []
    if user_errors:
        return {}, _user_error(user_errors[0], test_id)
    updated: Dict[str, TestStatus] = {}
    for test in payload.get("updatedTests") or []:
        if not test.get("id") or not test.get("status"):
            continue
        try:
            updated[test["id"]] = TestStatus(test["status"])
        except ValueError:
            logger.warning(f"Ignoring unknown status {test['status']!r} for test {test['id']}")
    return updated, None


async def _call(callback: Callable[..., Awaitable[None] | None] | None, *args: Any) -> None:
    if callback is None:
        return
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


class ReviewProtocol:
    """Submits review decisions, one in flight per test.

    The protocol never edits test statuses itself. ``on_success`` is expected
    to trigger a refetch so the new statuses come from the service.
    """

    def __init__(
        self,
        client: GraphQLClient,
        *,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._client = client
        self._on_success = on_success
        self._on_error = on_error
        self._in_flight: Set[str] = set()

    def is_reviewing(self, test_id: str | None = None) -> bool:
        if test_id is None:
            return bool(self._in_flight)
        return test_id in self._in_flight

    def _check_preconditions(
        self, test_id: str, reviewable_build: Build | None, can_review: bool
    ) -> ReviewPreconditionError | None:
        if test_id in self._in_flight:
            return ReviewInProgressError(
                f"A review for test {test_id} is already being submitted.", test_id=test_id
            )
        if reviewable_build is None:
            return ReviewPreconditionError(
                "Only the latest build on this branch can be reviewed.", test_id=test_id
            )
        build_tests = {test.id for test in reviewable_build.tests_for_story}
        build_tests.update(test.id for test in reviewable_build.tests_for_status)
        if test_id not in build_tests:
            return ReviewPreconditionError(
                f"Test {test_id} does not belong to the reviewable build {reviewable_build.id}.",
                test_id=test_id,
            )
        if not can_review:
            return ReviewPreconditionError(
                "You do not have permission to review tests in this project.", test_id=test_id
            )
        return None

    async def review_test(
        self,
        test_id: str,
        decision: ReviewDecision,
        batch: ReviewBatch = ReviewBatch.SPEC,
        *,
        reviewable_build: Build | None,
        can_review: bool,
    ) -> ReviewOutcome:
        ctx_logger = log_with_context(
            logger,
            test_id=test_id,
            build_id=reviewable_build.id if reviewable_build else None,
            decision=decision.value,
            batch=batch.value,
        )

        precondition_error = self._check_preconditions(test_id, reviewable_build, can_review)
        if precondition_error is not None:
            ctx_logger.warning(f"Review rejected before submission: {precondition_error}")
            return await self._fail(test_id, decision, batch, precondition_error)

        failure: ReviewError | None = None
        updated: Dict[str, TestStatus] = {}
        self._in_flight.add(test_id)
        try:
            with log_timing(ctx_logger, "review_test"):
                result = await self._client.execute(
                    MUTATION_REVIEW_TEST,
                    {"input": {"testId": test_id, "status": decision.value, "batch": batch.value}},
                    operation_name="ReviewTest",
                )
            if result.error is not None:
                failure = ReviewRequestError(
                    f"Failed to submit review: {result.error}", test_id=test_id, cause=result.error
                )
            else:
                updated, failure = parse_review_payload(result.data, test_id)
        except InvariantViolation:
            raise
        except Exception as exc:
            failure = ReviewRequestError(f"Failed to submit review: {exc}", test_id=test_id, cause=exc)
        finally:
            self._in_flight.discard(test_id)

        if failure is not None:
            return await self._fail(test_id, decision, batch, failure)

        outcome = ReviewOutcome(
            ok=True, test_id=test_id, decision=decision, batch=batch, updated_tests=updated
        )
        log_success(logger, f"Review saved ({len(updated)} tests updated)", test_id=test_id)
        await _call(self._on_success, outcome)
        return outcome

    async def accept_test(self, test_id: str, batch: ReviewBatch = ReviewBatch.SPEC, **kwargs: Any) -> ReviewOutcome:
        return await self.review_test(test_id, ReviewDecision.ACCEPTED, batch, **kwargs)

    async def unaccept_test(self, test_id: str, batch: ReviewBatch = ReviewBatch.SPEC, **kwargs: Any) -> ReviewOutcome:
        return await self.review_test(test_id, ReviewDecision.PENDING, batch, **kwargs)

    async def _fail(
        self, test_id: str, decision: ReviewDecision, batch: ReviewBatch, error: ReviewError
    ) -> ReviewOutcome:
        if not isinstance(error, ReviewPreconditionError):
            log_failure(logger, "Review failed", error, test_id=test_id)
        await _call(self._on_error, error, decision)
        return ReviewOutcome(ok=False, test_id=test_id, decision=decision, batch=batch, error=error)
