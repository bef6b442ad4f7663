"""
Shared fixtures for the HTTP tests
"""

import pytest
from fastapi.testclient import TestClient

from treeserve.main import create_app
from treeserve.models import Config, ServerConfig, TlsConfig, AuthConfig


def make_config(root, username: str = "", password: str = "") -> Config:
    return Config(
        server=ServerConfig(root=root, tls=TlsConfig(enabled=False)),
        auth=AuthConfig(username=username, password=password),
    )


@pytest.fixture
def root(tmp_path):
    root = tmp_path / "share"
    root.mkdir()
    (root / "docs").mkdir()
    (root / "docs" / "readme.txt").write_text("hello world")
    (root / "data.bin").write_bytes(bytes(i % 256 for i in range(1000)))
    return root


@pytest.fixture
def client(root):
    """Client for a server with auth disabled"""
    app = create_app(make_config(root))
    return TestClient(app)


@pytest.fixture
def auth_client(root):
    """Client for a server guarded by admin/secret"""
    app = create_app(make_config(root, username="admin", password="secret"))
    return TestClient(app)


@pytest.fixture
def make_client():
    """Client factory for tests that need their own configuration"""
    def factory(config: Config) -> TestClient:
        return TestClient(create_app(config))
    return factory
