"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from aws_mock import MockIamClient, MockNamespaceStore, MockObjectStore  # noqa: E402


@pytest.fixture
def iam() -> MockIamClient:
    return MockIamClient()


@pytest.fixture
def namespaces() -> MockNamespaceStore:
    return MockNamespaceStore()


@pytest.fixture
def store() -> MockObjectStore:
    return MockObjectStore()
