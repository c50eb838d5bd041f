"""Shared fixtures: every test runs against a fresh session."""

import pytest

from knowstore import session as ks_session


@pytest.fixture(autouse=True)
def session():
    """Reset the process session before and after each test."""
    s = ks_session.reset()
    yield s
    ks_session.reset()


@pytest.fixture
def space(session):
    return session.dataspace("s")
