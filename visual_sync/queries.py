"""GraphQL documents used by the sync engine."""

from __future__ import annotations

from typing import Any, Dict

from visual_sync.models.build import TestStatus
from visual_sync.models.revision import RevisionContext, SelectedBuildInfo

# Test statuses that contribute to the sidebar status map.
STATUS_TEST_STATUSES = [
    TestStatus.IN_PROGRESS,
    TestStatus.PENDING,
    TestStatus.DENIED,
    TestStatus.BROKEN,
    TestStatus.FAILED,
]

_TEST_FIELDS = """
fragment StoryTestFields on Test {
  id
  status
  result
  webUrl
  story { storyId }
  mode { name }
  comparisons {
    id
    result
    browser { id key name }
    viewport { id name width }
    diffImage { imageUrl imageWidth }
    headImage { imageUrl imageWidth }
    baseImage { imageUrl imageWidth }
  }
}
"""

_BUILD_FIELDS = """
fragment BuildFields on Build {
  id
  number
  status
  result
  branch
  commit
  uncommittedHash
  committedAt
  startedAt
  changeCount
  brokenCount
  webUrl
}
"""

QUERY_BUILD = (
    """
query VisualTestsBuild(
  $projectId: ID!
  $branch: String!
  $slug: String
  $gitUserEmailHash: String
  $storyId: String!
  $testStatuses: [TestStatus!]!
  $storyBuildId: ID!
  $hasStoryBuildId: Boolean!
) {
  project(id: $projectId) {
    id
    name
    canReview
    lastBuild(branches: [$branch], repositorySlug: $slug, localBuildEmailHash: $gitUserEmailHash) {
      ...BuildFields
      testsForStatus: tests(statuses: $testStatuses) { nodes { ...StoryTestFields } }
      testsForStory: tests(storyId: $storyId) { nodes { ...StoryTestFields } }
    }
  }
  viewer {
    preferences { vtaOnboarding }
  }
  storyBuild: build(id: $storyBuildId) @include(if: $hasStoryBuildId) {
    ...BuildFields
    testsForStory: tests(storyId: $storyId) { nodes { ...StoryTestFields } }
  }
}
"""
    + _BUILD_FIELDS
    + _TEST_FIELDS
)

MUTATION_REVIEW_TEST = """
mutation ReviewTest($input: ReviewTestInput!) {
  reviewTest(input: $input) {
    updatedTests { id status }
    userErrors {
      __typename
      ... on UserError { message }
      ... on BuildSupersededError { build { id } }
      ... on TestUnreviewableError { test { id } }
    }
  }
}
"""

MUTATION_UPDATE_USER_PREFERENCES = """
mutation UpdateUserPreferences($input: UserPreferencesInput!) {
  updateUserPreferences(input: $input) {
    userPreferences { vtaOnboarding }
  }
}
"""


def build_query_variables(
    project_id: str,
    story_id: str,
    selection: SelectedBuildInfo | None,
    context: RevisionContext,
) -> Dict[str, Any]:
    """Variables for QUERY_BUILD; fetch by id when a build is selected, else latest on branch."""

    build_id = selection.build_id if selection is not None else None
    variables: Dict[str, Any] = {
        "projectId": project_id,
        "storyId": story_id,
        "testStatuses": [status.value for status in STATUS_TEST_STATUSES],
        "branch": context.branch or "",
        "gitUserEmailHash": context.user_email_hash,
        "storyBuildId": build_id or "",
        "hasStoryBuildId": bool(build_id),
    }
    if context.slug:
        variables["slug"] = context.slug
    return variables
