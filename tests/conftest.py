# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the Strand SDK test suite.
"""

from __future__ import annotations

import pytest

from strand_sdk.generation import GenerationClient, ObjectSchema, StringSchema
from strand_sdk.mock.mock_generation_adapter import MockGenerationAdapter


@pytest.fixture
def say_schema() -> ObjectSchema:
    return ObjectSchema(properties={"say": StringSchema(description="A single word to say")})


@pytest.fixture
def mock_adapter() -> MockGenerationAdapter:
    return MockGenerationAdapter()


@pytest.fixture
def client(mock_adapter: MockGenerationAdapter) -> GenerationClient:
    return GenerationClient(mock_adapter)
