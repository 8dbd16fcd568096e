# tests/conftest.py
"""Shared test fixtures and helpers.

Fixtures build the access layer against FakeSheetsBackend, an in-memory
spreadsheet served through httpx.MockTransport, so no test touches the
network. Backoff and budget waits go through RecordingSleep, which records
the requested delay and yields to the event loop without actually waiting.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
import random
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from rowgate.access import AccessLayer
from rowgate.testing import FakeSheetsBackend
from tests.helpers.fakes import USERS_HEADER, USERS_ROWS, FakeClock, RecordingSleep, make_settings


@pytest.fixture
def sleep_recorder() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeSheetsBackend:
    """Spreadsheet with a populated Users sheet."""
    store = FakeSheetsBackend()
    store.add_sheet("Users", [USERS_HEADER, *USERS_ROWS])
    return store


@pytest.fixture
def access_factory(
    backend: FakeSheetsBackend, sleep_recorder: RecordingSleep
) -> Callable[..., AccessLayer]:
    """Build access layers over the fake backend with custom settings sections."""

    def _factory(**sections: Any) -> AccessLayer:
        return AccessLayer.from_settings(
            make_settings(backend.spreadsheet_id, **sections),
            transport=backend.transport(),
            sleep=sleep_recorder,
            rng=random.Random(7),
        )

    return _factory


@pytest.fixture
async def access(access_factory: Callable[..., AccessLayer]) -> AsyncIterator[AccessLayer]:
    layer = access_factory()
    yield layer
    await layer.aclose()


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
