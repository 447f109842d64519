"""Shared fixtures for the mobilesync test suite."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from fakes import FakeDeviceRepository, FakeNotificationRepository, FakeTransport, FakeUserRepository, RecordingPruner


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def user_repo() -> FakeUserRepository:
  return FakeUserRepository()


@pytest.fixture
def device_repo(user_repo: FakeUserRepository) -> FakeDeviceRepository:
  return FakeDeviceRepository(user_repo=user_repo)


@pytest.fixture
def notification_repo() -> FakeNotificationRepository:
  return FakeNotificationRepository()


@pytest.fixture
def transport() -> FakeTransport:
  return FakeTransport()


@pytest.fixture
def pruner() -> RecordingPruner:
  return RecordingPruner()


@pytest.fixture
def fixed_ids() -> Callable[[], str]:
  counter = {"value": 0}

  def _next() -> str:
    counter["value"] += 1
    return f"notification-{counter['value']}"

  return _next

