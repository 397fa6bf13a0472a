from pathlib import Path

import pytest

from aurora_relay.config import load_config
from aurora_relay.errors import RelayConfigurationError


def test_load_config_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "aurora-relay.cfg"
    config = load_config(config_path, environ={})

    assert config.server.host == "0.0.0.0"
    assert config.server.port == 5000
    assert config.server.require_observer_identity is False
    assert config.auth.token_secret == "dev"
    assert config.auth.token_algorithm == "HS256"
    assert config.auth.require_token_expiry is True
    assert config.auth.command_roles == []
    assert config.auth.admin_roles == ["admin"]
    assert config.hub.max_pending_events == 100
    assert config.mqtt.enabled is False
    assert config.mqtt.topic_prefix == "aurora/devices"
    assert config.mqtt.qos == 1
    assert config.mqtt.retain is True
    assert config.logging.level == "INFO"
    assert config.logging.path is None
    assert config.device_secrets == {}
    assert config.path == config_path


def test_load_config_overrides_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "aurora-relay.cfg"
    config_path.write_text(
        """
[server]
host = 127.0.0.1
port = 8080
require_observer_identity = yes

[auth]
token_secret = s3cr%t
require_token_expiry = no
command_roles = resident, admin
admin_roles =

[mqtt]
enabled = true
broker_host = broker.local
topic_prefix = /home/devices/
qos = 7
retain = false

[logging]
level = DEBUG
path = ~/relay.log

[device_secrets]
Door-1 = door-secret
solar-roof =
        """.strip()
        + "\n",
        encoding="utf-8",
    )

    config = load_config(config_path, environ={})

    assert config.server.host == "127.0.0.1"
    assert config.server.port == 8080
    assert config.server.require_observer_identity is True
    assert config.auth.token_secret == "s3cr%t"
    assert config.auth.require_token_expiry is False
    assert config.auth.command_roles == ["resident", "admin"]
    assert config.auth.admin_roles == ["admin"]
    assert config.mqtt.enabled is True
    assert config.mqtt.broker_host == "broker.local"
    assert config.mqtt.topic_prefix == "home/devices"
    assert config.mqtt.qos == 2
    assert config.mqtt.retain is False
    assert config.logging.level == "DEBUG"
    assert config.logging.path == Path("~/relay.log").expanduser()
    assert config.device_secrets == {"Door-1": "door-secret"}


def test_environment_overrides_file(tmp_path: Path) -> None:
    config_path = tmp_path / "aurora-relay.cfg"
    config_path.write_text(
        "[auth]\ntoken_secret = from-file\n[device_secrets]\ndoor-1 = old\n",
        encoding="utf-8",
    )

    config = load_config(
        config_path,
        environ={
            "AURORA_JWT_SECRET": "from-env",
            "AURORA_PORT": "6000",
            "AURORA_DEVICE_SECRETS": '{"door-1": "new", "solar-roof": "sun"}',
        },
    )

    assert config.auth.token_secret == "from-env"
    assert config.server.port == 6000
    assert config.device_secrets == {"door-1": "new", "solar-roof": "sun"}


@pytest.mark.parametrize("value", ["not json", '["door-1"]'])
def test_invalid_device_secrets_environment(tmp_path: Path, value: str) -> None:
    with pytest.raises(RelayConfigurationError):
        load_config(
            tmp_path / "aurora-relay.cfg", environ={"AURORA_DEVICE_SECRETS": value}
        )
