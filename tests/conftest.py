from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class FakePlacedAgent:
    def __init__(self, call_id: str) -> None:
        self.call_id = call_id


class FakeInitiator:
    def __init__(self) -> None:
        self.requests: list[dict] = []
        self.active_calls: list[str] = []

    async def place_call(self, **request) -> FakePlacedAgent:
        self.requests.append(request)
        self.active_calls.append("CA123")
        return FakePlacedAgent("CA123")

    async def shutdown(self) -> None:
        return None


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    tmp_dir = tmp_path_factory.mktemp("runtime")

    # Must be set before the cached settings are first built.
    os.environ["DATA_DIR"] = str(tmp_dir)
    os.environ.pop("TWILIO_ACCOUNT_SID", None)

    import importlib

    for module_name in [
        "config.settings",
        "api.dependencies",
        "api.routes",
        "api.twilio_routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def fake_initiator() -> FakeInitiator:
    return FakeInitiator()


@pytest.fixture()
def client(app, fake_initiator):
    # Never dial out or build real agents from tests.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_initiator] = lambda: fake_initiator

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
