from __future__ import annotations

import json
from typing import Any, Callable, Dict, List

import httpx

from visual_sync.models.build import TestRecord, parse_build
from visual_sync.models.revision import RevisionContext

STORY = "button--primary"
OTHER_STORY = "button--secondary"


def comparison_payload(
    result: str | None = "EQUAL",
    *,
    browser_id: str = "chrome",
    viewport_id: str = "vp-1200",
    comparison_id: str | None = None,
) -> Dict[str, Any]:
    return {
        "id": comparison_id or f"cmp-{browser_id}-{viewport_id}",
        "result": result,
        "browser": {"id": browser_id, "key": browser_id.upper(), "name": browser_id.title()},
        "viewport": {"id": viewport_id, "name": viewport_id, "width": 1200},
    }


def record_payload(
    test_id: str,
    *,
    story_id: str = STORY,
    status: str = "ACCEPTED",
    result: str | None = "EQUAL",
    mode_name: str = "",
    comparisons: List[Dict[str, Any]] | None = None,
    web_url: str | None = None,
) -> Dict[str, Any]:
    return {
        "id": test_id,
        "status": status,
        "result": result,
        "story": {"storyId": story_id},
        "mode": {"name": mode_name},
        "webUrl": web_url,
        "comparisons": comparisons if comparisons is not None else [comparison_payload(result)],
    }


def make_test(test_id: str, **kwargs: Any) -> TestRecord:
    return TestRecord.model_validate(record_payload(test_id, **kwargs))


def build_payload(
    build_id: str,
    *,
    status: str = "COMPLETED",
    committed_at: int = 1_000,
    uncommitted_hash: str | None = None,
    branch: str = "main",
    tests_for_status: List[Dict[str, Any]] | None = None,
    tests_for_story: List[Dict[str, Any]] | None = None,
    result: str = "PASSED",
    started_at: int = 900,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": build_id,
        "number": int("".join(ch for ch in build_id if ch.isdigit()) or 0),
        "status": status,
        "branch": branch,
        "commit": f"commit-{build_id}",
        "uncommittedHash": uncommitted_hash,
        "committedAt": committed_at,
        "startedAt": started_at,
        "webUrl": f"https://builds.test/build/{build_id}",
        "testsForStatus": {"nodes": tests_for_status or []},
        "testsForStory": {"nodes": tests_for_story or []},
    }
    if status == "COMPLETED":
        payload["result"] = result
    return payload


def make_build(build_id: str, **kwargs: Any):
    return parse_build(build_payload(build_id, **kwargs))


def make_context(**overrides: Any) -> RevisionContext:
    values: Dict[str, Any] = {
        "branch": "main",
        "commit": "local-commit",
        "slug": "acme/widgets",
        "committed_at": 1_000,
        "uncommitted_hash": None,
        "user_email_hash": "user-hash",
    }
    values.update(overrides)
    return RevisionContext(**values)


class FakeBuildService:
    """Answers the build query and review mutations from in-memory payloads."""

    def __init__(self) -> None:
        self.last_build: Dict[str, Any] | None = None
        self.builds: Dict[str, Dict[str, Any]] = {}
        self.can_review = True
        self.onboarding: str | None = "COMPLETED"
        self.requests: List[Dict[str, Any]] = []
        self.review_response: Dict[str, Any] | Callable[[Dict[str, Any]], Dict[str, Any]] | None = None
        self.fail_with: int | None = None
        self.raw_bodies: Dict[str, List[Any]] = {}

    def operations(self, name: str) -> List[Dict[str, Any]]:
        return [body for body in self.requests if body.get("operationName") == name]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"errors": [{"message": "service unavailable"}]})

        operation = body.get("operationName")
        if self.raw_bodies.get(operation):
            raw = json.dumps(self.raw_bodies[operation].pop(0)).encode()
            return httpx.Response(200, content=raw, headers={"Content-Type": "application/json"})
        variables = body.get("variables") or {}
        if operation == "VisualTestsBuild":
            return httpx.Response(200, json={"data": self._build_data(variables)})
        if operation == "ReviewTest":
            response = self.review_response
            if callable(response):
                response = response(variables)
            return httpx.Response(200, json={"data": response or self._accept_all(variables)})
        if operation == "UpdateUserPreferences":
            self.onboarding = variables["input"]["vtaOnboarding"]
            return httpx.Response(
                200,
                json={"data": {"updateUserPreferences": {"userPreferences": {"vtaOnboarding": self.onboarding}}}},
            )
        return httpx.Response(400, json={"errors": [{"message": f"Unknown operation {operation}"}]})

    def _build_data(self, variables: Dict[str, Any]) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "project": {
                "id": variables["projectId"],
                "name": "Widgets",
                "canReview": self.can_review,
                "lastBuild": self.last_build,
            },
            "viewer": {"preferences": {"vtaOnboarding": self.onboarding}},
        }
        if variables.get("hasStoryBuildId"):
            build_id = variables["storyBuildId"]
            data["storyBuild"] = self.builds.get(build_id) or (
                self.last_build if self.last_build and self.last_build["id"] == build_id else None
            )
        return data

    @staticmethod
    def _accept_all(variables: Dict[str, Any]) -> Dict[str, Any]:
        review = variables["input"]
        return {
            "reviewTest": {
                "updatedTests": [{"id": review["testId"], "status": review["status"]}],
                "userErrors": [],
            }
        }
