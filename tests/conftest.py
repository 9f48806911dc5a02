"""Shared fixtures: a default service and a one-action batch."""

from __future__ import annotations

import pytest

from builders import make_service
from subgovernance.models.voting import ActionRef
from subgovernance.service import SubgovernanceService


@pytest.fixture
def service() -> SubgovernanceService:
    return make_service()


@pytest.fixture
def dummy_actions() -> list[ActionRef]:
    return [ActionRef(target="treasury", value=0, payload=b"\x00\x00\x00\x00")]
