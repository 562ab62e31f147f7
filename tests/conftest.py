"""Shared test fixtures for archiveloop tests."""

from __future__ import annotations

import logging

import pytest
from fakes import FakeGadgetProbe, FakeHost


@pytest.fixture(scope="session", autouse=True)
def configure_test_logging() -> None:
    """Keep library noise out of live logging while showing archiveloop output."""
    logging.getLogger().setLevel(logging.WARNING)
    logging.getLogger("archiveloop").setLevel(logging.DEBUG)
    logging.getLogger("tests").setLevel(logging.DEBUG)


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def gadget_probe(fake_host: FakeHost) -> FakeGadgetProbe:
    return FakeGadgetProbe(fake_host)
