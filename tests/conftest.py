from __future__ import annotations

import httpx
import pytest

from factories import FakeBuildService
from visual_sync.graphql_client import GraphQLClient


@pytest.fixture
def service() -> FakeBuildService:
    return FakeBuildService()


@pytest.fixture
def graphql_client(service: FakeBuildService) -> GraphQLClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(service.handler), base_url="https://builds.test")
    return GraphQLClient(base_url="https://builds.test", access_token="local-token", client=http)
