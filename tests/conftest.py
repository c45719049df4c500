from __future__ import annotations

import pytest
from fakes import FakeEC2Backend, FakeSecrets, FakeUserData, RecordingEvents, make_scope

from capaws.config import ProviderConfig
from capaws.instances import InstanceService
from capaws.scope import ClusterScope


@pytest.fixture
def backend() -> FakeEC2Backend:
    return FakeEC2Backend()


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def secrets() -> FakeSecrets:
    return FakeSecrets()


@pytest.fixture
def service_factory(backend, events, secrets):
    def factory(scope: ClusterScope | None = None) -> InstanceService:
        return InstanceService(
            backend,
            scope or make_scope(),
            events=events,
            user_data=FakeUserData(),
            secrets=secrets,
            config=ProviderConfig(running_timeout=30, terminated_timeout=30),
            cert_hasher=lambda pem: "sha256:fake",
        )

    return factory


@pytest.fixture
def service(service_factory) -> InstanceService:
    return service_factory()
