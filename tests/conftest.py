from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


# Ensure the project root is on ``sys.path`` so tests can import ``exr_inspector``
# without requiring the package to be installed in the environment.
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    # ``insert`` keeps the repo ahead of any site-packages entry so that the
    # in-tree modules are exercised.
    sys.path.insert(0, str(_PROJECT_ROOT))

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from exr_inspector.core.bridge import attach_host, detach_host  # noqa: E402
from exr_inspector.core.gateway import CommandGateway  # noqa: E402
from tests._fakes import FakeBridge  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_bridge():
    """Every test starts without an attached host or a cached bridge."""

    CommandGateway.reset_cache()
    detach_host()
    yield
    CommandGateway.reset_cache()
    detach_host()


@pytest.fixture()
def fake_bridge() -> FakeBridge:
    bridge = FakeBridge()
    attach_host(bridge)
    return bridge


@pytest.fixture()
def gateway(fake_bridge: FakeBridge) -> CommandGateway:
    gateway = CommandGateway(poll_interval=0.005, ready_timeout=1.0)
    assert gateway.ensure_ready()
    return gateway
