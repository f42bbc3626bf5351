"""Shared fixtures around the in-memory stores and test doubles."""

import pytest

from app.graphs.state import LoopConfig, LoopDependencies
from app.services.storage import InMemoryFileStore, InMemoryMessageStore, InMemoryProjectStore
from app.services.versions import InMemoryVersionStore
from app.utils.cancellation import CancellationToken
from tests.fakes import EventRecorder, FakeRuntime, ScriptedModelClient


@pytest.fixture
def model():
    return ScriptedModelClient()


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def file_store():
    return InMemoryFileStore()


@pytest.fixture
def message_store():
    return InMemoryMessageStore()


@pytest.fixture
def project_store():
    return InMemoryProjectStore()


@pytest.fixture
def version_store():
    return InMemoryVersionStore()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def make_dependencies(model, message_store, file_store, runtime, recorder):
    """Build loop dependencies around the shared fakes."""

    def _make(max_iterations: int = 40, max_delegation_rounds: int = 5, cancel_token: CancellationToken | None = None):
        return LoopDependencies(
            model_client=model,
            message_store=message_store,
            file_store=file_store,
            runtime=runtime,
            config=LoopConfig(max_iterations=max_iterations, max_delegation_rounds=max_delegation_rounds),
            cancel_token=cancel_token or CancellationToken(),
            sink=recorder,
        )

    return _make
