import socket
import threading
import time

import pytest
import uvicorn
from fastapi.testclient import TestClient

from hub import Hub
from main import create_app
from store import Store


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    return Store()


@pytest.fixture
def hub():
    return Hub()


@pytest.fixture
def app(store, hub):
    return create_app(store=store, hub=hub, keepalive=0.05)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def broadcasts(hub, monkeypatch):
    """Events handed to the hub, in call order."""
    sent = []
    original = hub.broadcast

    def record(event):
        sent.append(event)
        return original(event)

    monkeypatch.setattr(hub, "broadcast", record)
    return sent


@pytest.fixture
def live_server(store, hub):
    """Serve a fresh app with uvicorn on a free port; yields its base URL."""
    # keepalive far above any test timeout so teardown must come from the disconnect
    app = create_app(store=store, hub=hub, keepalive=30)
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    server = uvicorn.Server(
        uvicorn.Config(app, lifespan="off", log_level="warning", timeout_graceful_shutdown=2)
    )
    thread = threading.Thread(target=server.run, kwargs={"sockets": [sock]}, daemon=True)
    thread.start()
    deadline = time.monotonic() + 5
    while not server.started:
        if time.monotonic() > deadline:
            raise RuntimeError("uvicorn did not start")
        time.sleep(0.01)
    yield f"http://127.0.0.1:{port}"
    server.should_exit = True
    thread.join(timeout=5)
    sock.close()
