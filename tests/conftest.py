"""
Shared fixtures for tag sync tests.

Everything here runs against the in-memory store; no test talks to
Supabase. The store is seen through a primary and an elevated
FaultyConnection over the same tables.
"""

import pytest

from tagsync.config import ExecutorSettings, TagSettings
from tagsync.execution import ResilientExecutor
from tagsync.reconciliation import TagReconciler
from tagsync.services.storage import InMemoryConnection, default_unique_keys

from tests.fakes import FaultyConnection, RecordingSleep


@pytest.fixture
def tag_settings():
    return TagSettings()


@pytest.fixture
def executor_settings():
    return ExecutorSettings(max_retries=3, initial_delay_ms=500, tag_max_retries=2)


@pytest.fixture
def store(tag_settings):
    """The shared tables, seen through the primary connection."""
    return InMemoryConnection(name="primary", unique_keys=default_unique_keys(tag_settings))


@pytest.fixture
def primary(store):
    return FaultyConnection(store)


@pytest.fixture
def elevated(store):
    return FaultyConnection(store.view("elevated"))


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def executor(primary, elevated, sleep):
    return ResilientExecutor(primary=primary, elevated=elevated, sleep=sleep)


@pytest.fixture
def reconciler(executor, tag_settings, executor_settings):
    return TagReconciler(
        executor,
        tag_settings=tag_settings,
        executor_settings=executor_settings,
    )
