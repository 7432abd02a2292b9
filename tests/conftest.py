"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import dataclasses
import os
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.http import port_is_free, wait_for_port
from webapp.auth.storage import create_token_engine, metadata
from webapp.auth.tokens import TokenStore
from webapp.bootstrap.config import (
    BIND_PORT,
    DEV_BIND_HOST,
    SiteSettings,
    resolve_deployment,
)
from webapp.bootstrap.wiring import build_app_server
from webapp.lifecycle.server import AppServer

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"

TEST_CSRF_SECRET = "test-csrf-secret-0123456789abcdef"
TEST_TOKEN_KEY = "test-token-key"
STATIC_FILES = {
    "hello.txt": b"hello from static\n",
    "styles/site.css": b"body { color: #333; }\n",
    "docs/index.html": b"<h1>docs</h1>\n",
}


class ServerInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    directory: Path
    server: AppServer
    store: TokenStore


class ServerProcessInfo(TypedDict):
    """Metadata describing a server running in a child process."""

    base_url: str
    host: str
    port: int
    directory: Path
    process: subprocess.Popen[str]
    log_file: Path


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture()
def site_settings(tmp_path: Path) -> SiteSettings:
    """Development-mode settings with test secrets and a throwaway database."""

    return SiteSettings(
        csrf_secret=TEST_CSRF_SECRET,
        token_key=TEST_TOKEN_KEY,
        db_dsn=f"sqlite:///{tmp_path / 'tokens.db'}",
    )


@pytest.fixture()
def token_engine(site_settings: SiteSettings) -> Generator["Engine", None, None]:
    """SQLite engine with the token table created."""

    engine = create_token_engine(site_settings.db_dsn)
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def static_dir(tmp_path: Path) -> Path:
    """Populate a directory of static files to serve."""

    root = tmp_path / "static"
    for relative, content in STATIC_FILES.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    (root / "empty").mkdir()
    (tmp_path / "secret.txt").write_bytes(b"outside the sandbox\n")
    return root


def start_app_server(
    settings: SiteSettings,
    directory: Path,
    engine: "Engine",
    grace_seconds: float = 2.0,
) -> tuple[AppServer, TokenStore]:
    """Start an in-process server on an ephemeral loopback port."""

    profile = dataclasses.replace(resolve_deployment(settings), bind_port=0)
    store = TokenStore()
    server = build_app_server(
        settings, profile, str(directory), grace_seconds, engine=engine, store=store
    )
    server.start()
    assert server.wait_until_listening(timeout=5)
    return server, store


@pytest.fixture()
def app_server(
    site_settings: SiteSettings, static_dir: Path, token_engine: "Engine"
) -> Generator[ServerInfo, None, None]:
    """Run AppServer in-process for integration tests."""

    server, store = start_app_server(site_settings, static_dir, token_engine)
    host = server.profile.bind_host
    try:
        yield {
            "base_url": f"http://{host}:{server.port}",
            "host": host,
            "port": server.port,
            "directory": static_dir,
            "server": server,
            "store": store,
        }
    finally:
        server.request_shutdown()
        server.wait_stopped()


@pytest.fixture()
def base_url(app_server: ServerInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return app_server["base_url"]


@pytest.fixture(name="dev_server_process")
def _dev_server_process(
    tmp_path: Path, static_dir: Path
) -> Generator[ServerProcessInfo, None, None]:
    """Launch main.py on the development address in a child process."""

    host, port = DEV_BIND_HOST, BIND_PORT
    if not port_is_free(host, port):
        pytest.skip(f"{host}:{port} is already in use")

    log_file = tmp_path / "logs" / "webapp.log"
    env = {
        **os.environ,
        "WEBAPP_CSRF_SECRET": TEST_CSRF_SECRET,
        "WEBAPP_TOKEN_KEY": TEST_TOKEN_KEY,
        "WEBAPP_DB_DSN": f"sqlite:///{tmp_path / 'tokens.db'}",
        "WEBAPP_PRODUCTION": "false",
    }
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "-dir",
        str(static_dir),
        "-graceful-timeout",
        "2s",
        "--log-destination",
        str(log_file),
    ]
    with subprocess.Popen(
        args,
        cwd=tmp_path,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except RuntimeError:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "directory": static_dir,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.kill()
            process.wait(timeout=5)
