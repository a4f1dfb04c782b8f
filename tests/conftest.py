"""Shared pytest configuration."""

import pytest


@pytest.fixture
def anyio_backend() -> str:
    # The engine is built on asyncio primitives; run anyio-marked tests on asyncio.
    return "asyncio"
