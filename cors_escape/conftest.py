import pytest

from cors_escape.config import CorsEscapeConfig
from cors_escape.utils_tests.upstream_mock import FakeUpstream


@pytest.fixture
def upstream():
    """Fake target servers, reached through an httpx MockTransport."""
    return FakeUpstream()


@pytest.fixture
def config():
    """Library defaults, with X-Forwarded-* headers off to keep assertions small."""
    return CorsEscapeConfig(xfwd=False)
