"""Shared test fixtures and helpers."""

import os
import time

import pytest

from planforge.api.deps import build_services
from planforge.artifacts.store import ArtifactStore
from planforge.config import Settings
from planforge.context.assembler import ContextAssembler
from planforge.context.catalog import PromptCatalog


class FakeGateway:
    """Records prompts and replays canned responses."""

    model_id = "fake-model"

    def __init__(self, responses=None, ready=True, default="Generated text", delay=0.0):
        self.responses = list(responses or [])
        self.prompts: list[str] = []
        self.ready = ready
        self.default = default
        self.delay = delay

    def is_ready(self) -> bool:
        return self.ready

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            time.sleep(self.delay)
        if self.responses:
            return self.responses.pop(0)
        return self.default


def set_age(path, seconds_ago: float) -> None:
    """Backdate a file's mtime so listing order is deterministic."""
    stamp = time.time() - seconds_ago
    os.utime(path, (stamp, stamp))


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path / "data")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(settings, gateway):
    return build_services(settings, gateway=gateway)


@pytest.fixture
def artifacts(tmp_path):
    return ArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def catalog():
    return PromptCatalog()


@pytest.fixture
def assembler(catalog, artifacts, gateway):
    return ContextAssembler(catalog, artifacts, gateway)
