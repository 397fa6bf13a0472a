import asyncio
from pathlib import Path

import aiohttp
import pytest

from aurora_relay.adapters import MQTTConnectionError
from aurora_relay.app import RelayApp
from aurora_relay.config import load_config


class UnreachableBroker:
    def __init__(self) -> None:
        self.disconnected = False

    async def connect(self) -> None:
        raise MQTTConnectionError("Timed out connecting to MQTT broker")

    async def disconnect(self) -> None:
        self.disconnected = True

    def is_connected(self) -> bool:
        return False


def _config(tmp_path: Path, port: int):
    path = tmp_path / "aurora-relay.cfg"
    path.write_text(f"[server]\nhost = 127.0.0.1\nport = {port}\n", encoding="utf-8")
    return load_config(path, environ={})


async def _wait_until_serving(url: str) -> aiohttp.ClientResponse:
    async with aiohttp.ClientSession() as session:
        for _ in range(50):
            try:
                async with session.get(url) as response:
                    await response.read()
                    return response
            except aiohttp.ClientConnectionError:
                await asyncio.sleep(0.05)
    raise AssertionError(f"{url} never came up")


@pytest.mark.asyncio
async def test_app_serves_until_shutdown(tmp_path, unused_tcp_port):
    app = RelayApp(_config(tmp_path, unused_tcp_port))
    task = asyncio.create_task(app.run())

    response = await _wait_until_serving(f"http://127.0.0.1:{unused_tcp_port}/")
    assert response.status == 200

    app.request_shutdown()
    await asyncio.wait_for(task, timeout=5)

    assert app.hub.observer_count == 0


@pytest.mark.asyncio
async def test_app_keeps_serving_when_broker_is_unreachable(tmp_path, unused_tcp_port):
    broker = UnreachableBroker()
    app = RelayApp(_config(tmp_path, unused_tcp_port), mqtt_client=broker)
    task = asyncio.create_task(app.run())

    response = await _wait_until_serving(
        f"http://127.0.0.1:{unused_tcp_port}/healthz"
    )
    assert response.status == 503

    app.request_shutdown()
    await asyncio.wait_for(task, timeout=5)

    assert broker.disconnected
