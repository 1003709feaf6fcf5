"""
Global test configuration.
"""

from collections.abc import Callable, Sequence
from contextlib import suppress
import logging
import os
from typing import Any
from unittest.mock import AsyncMock

import pytest

from llm_router.core.models import Purpose
from llm_router.core.types import ModelDescriptor, RetryPolicy
from llm_router.pipeline.candidates import Candidate


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-in escape hatch: mark a test with @pytest.mark.allow_dotenv.
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "llm_router.config.env_loader.load_dotenv",
            lambda *_args, **_kwargs: False,
        )


@pytest.fixture(autouse=True)
def isolate_router_env(request, monkeypatch):
    """Remove LLM_ROUTER_* variables and debug toggles before each test.

    Escape hatch: @pytest.mark.allow_env_pollution keeps the current env.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith("LLM_ROUTER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("DEBUG", raising=False)


@pytest.fixture(autouse=True)
def neutral_home_config(request, monkeypatch, tmp_path):
    """Point the home-config path at an isolated temp file by default.

    Escape hatch: @pytest.mark.allow_real_home_config.
    """
    if request.node.get_closest_marker("allow_real_home_config"):
        return
    fake_home_dir = tmp_path / "home_config_isolated"
    fake_home_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("LLM_ROUTER_CONFIG_HOME", str(fake_home_dir / "llm_router.toml"))


@pytest.fixture
def project_dir(tmp_path, monkeypatch):
    """An empty project directory used as cwd, so no real pyproject.toml is found."""
    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.chdir(root)
    return root


# --- Pipeline helpers ---
@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Three attempts per candidate with tiny delays and two crops."""
    return RetryPolicy(
        max_attempts_per_candidate=3,
        min_delay=0.01,
        max_delay=0.05,
        per_attempt_timeout=5.0,
        max_crop_attempts=2,
    )


@pytest.fixture
def make_candidate() -> Callable[..., Candidate]:
    """Build a `Candidate` whose call is an `AsyncMock` with the given outcomes."""

    def _make(
        model_key: str,
        outcomes: Sequence[Any] | Any,
        *,
        purpose: Purpose = Purpose.COMPLETION,
        max_total_tokens: int = 1000,
        family: str = "test",
    ) -> Candidate:
        descriptor = ModelDescriptor(
            backend_family=family,
            model_key=model_key,
            max_total_tokens=max_total_tokens,
            purpose=purpose,
            dimensions=4 if purpose is Purpose.EMBEDDING else None,
        )
        if isinstance(outcomes, list):
            call = AsyncMock(side_effect=outcomes)
        else:
            call = AsyncMock(side_effect=lambda *_a, **_k: _resolve(outcomes))
        return Candidate(descriptor, call)

    return _make


def _resolve(outcome: Any) -> Any:
    if isinstance(outcome, BaseException):
        raise outcome
    return outcome


# --- Logging Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Sets the log level for noisy external libraries to WARNING."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)
