"""Wire models for builds, tests and comparisons returned by the build service."""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for GraphQL payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class BuildStatus(str, Enum):
    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class BuildResult(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    BROKEN = "BROKEN"


class TestStatus(str, Enum):
    __test__: ClassVar[bool] = False

    IN_PROGRESS = "IN_PROGRESS"
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DENIED = "DENIED"
    BROKEN = "BROKEN"
    FAILED = "FAILED"


class ComparisonResult(str, Enum):
    EQUAL = "EQUAL"
    ADDED = "ADDED"
    CHANGED = "CHANGED"
    FIXED = "FIXED"
    CAPTURE_ERROR = "CAPTURE_ERROR"


class BrowserInfo(WireModel):
    id: str
    key: str
    name: str


class ViewportInfo(WireModel):
    id: str
    name: str
    width: int | None = None


class CaptureImage(WireModel):
    image_url: str
    image_width: int | None = None


class Comparison(WireModel):
    id: str
    result: ComparisonResult | None = None
    browser: BrowserInfo
    viewport: ViewportInfo
    diff_image: CaptureImage | None = None
    head_image: CaptureImage | None = None
    base_image: CaptureImage | None = None


class TestRecord(WireModel):
    """One test of a build: a story in one mode, with its comparisons."""

    __test__: ClassVar[bool] = False

    id: str
    status: TestStatus
    result: ComparisonResult | None = None
    story_id: str
    mode_name: str = ""
    web_url: str | None = None
    comparisons: List[Comparison] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _lift_nested(cls, data: Any) -> Any:
        # The service nests story and mode objects; flatten them.
        if not isinstance(data, dict):
            return data
        data = dict(data)
        story = data.pop("story", None)
        if isinstance(story, dict) and "storyId" not in data and "story_id" not in data:
            data["storyId"] = story.get("storyId")
        mode = data.pop("mode", None)
        if isinstance(mode, dict) and "modeName" not in data and "mode_name" not in data:
            data["modeName"] = mode.get("name") or ""
        return data

    @model_validator(mode="after")
    def _unique_comparisons(self) -> "TestRecord":
        seen: set[tuple[str, str]] = set()
        for comparison in self.comparisons:
            key = (comparison.browser.id, comparison.viewport.id)
            if key in seen:
                raise ValueError(
                    f"Test {self.id} has more than one comparison for browser "
                    f"{comparison.browser.id} and viewport {comparison.viewport.id}"
                )
            seen.add(key)
        return self


def _lift_nodes(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("nodes") or []
    return value


class _BuildFields(WireModel):
    id: str
    number: int | None = None
    status: BuildStatus
    branch: str = ""
    commit: str = ""
    uncommitted_hash: str | None = None
    committed_at: int = 0
    started_at: int | None = None
    change_count: int = 0
    broken_count: int = 0
    web_url: str | None = None
    tests_for_status: List[TestRecord] = Field(default_factory=list)
    tests_for_story: List[TestRecord] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _lift_connections(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("testsForStatus", "testsForStory"):
            if key in data:
                data[key] = _lift_nodes(data[key])
        return data


class StartedBuild(_BuildFields):
    """A build that is queued or still capturing."""

    phase: Literal["started"] = "started"


class CompletedBuild(_BuildFields):
    phase: Literal["completed"] = "completed"
    result: BuildResult
    started_at: int


class FailedBuild(_BuildFields):
    """A build that failed as a whole (infrastructure error)."""

    phase: Literal["failed"] = "failed"


Build = StartedBuild | CompletedBuild | FailedBuild

_PHASE_BY_STATUS: Dict[BuildStatus, type[_BuildFields]] = {
    BuildStatus.QUEUED: StartedBuild,
    BuildStatus.IN_PROGRESS: StartedBuild,
    BuildStatus.COMPLETED: CompletedBuild,
    BuildStatus.FAILED: FailedBuild,
}


def parse_build(payload: Dict[str, Any] | None) -> Build | None:
    """Pick the build variant from its status and validate the payload into it."""

    if payload is None:
        return None
    try:
        status = BuildStatus(payload.get("status"))
    except ValueError as exc:
        raise ValueError(f"Unknown build status: {payload.get('status')!r}") from exc
    model = _PHASE_BY_STATUS[status]
    data = {key: value for key, value in payload.items() if key != "phase"}
    return model.model_validate(data)


class Project(WireModel):
    id: str
    name: str = ""
    can_review: bool = False
    last_build: Build | None = None

    @model_validator(mode="before")
    @classmethod
    def _parse_last_build(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("lastBuild"), dict):
            data = dict(data)
            data["lastBuild"] = parse_build(data["lastBuild"])
        return data
