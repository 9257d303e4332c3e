from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from .ecs_fixtures import make_settings, metadata_handler

if TYPE_CHECKING:
    from collections.abc import Iterator

    from tracesensor.settings import Settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def metadata_client() -> Iterator[httpx.Client]:
    client = httpx.Client(transport=httpx.MockTransport(metadata_handler()))
    yield client
    client.close()
