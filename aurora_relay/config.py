"""Configuration loader for aurora-relay."""

from __future__ import annotations

import json
import os
from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from . import constants
from .errors import RelayConfigurationError


@dataclass(slots=True)
class ServerConfig:
    host: str = constants.DEFAULT_HTTP_HOST
    port: int = constants.DEFAULT_HTTP_PORT
    require_observer_identity: bool = False
    websocket_heartbeat_seconds: float = 30.0


@dataclass(slots=True)
class AuthConfig:
    token_secret: str = constants.DEFAULT_TOKEN_SECRET
    token_algorithm: str = constants.DEFAULT_TOKEN_ALGORITHM
    token_leeway_seconds: float = 0.0
    require_token_expiry: bool = True
    command_roles: List[str] = field(default_factory=list)  # empty: any identity
    admin_roles: List[str] = field(default_factory=lambda: ["admin"])


@dataclass(slots=True)
class HubConfig:
    max_pending_events: int = 100


@dataclass(slots=True)
class MqttConfig:
    enabled: bool = False
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = constants.APP_NAME
    topic_prefix: str = constants.DEFAULT_TOPIC_PREFIX
    qos: int = 1
    retain: bool = True


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class RelayConfig:
    server: ServerConfig
    auth: AuthConfig
    hub: HubConfig
    mqtt: MqttConfig
    logging: LoggingConfig
    device_secrets: Dict[str, str]
    raw: ConfigParser
    path: Path


def _parse_list(value: Optional[str], *, default: Iterable[str] = ()) -> List[str]:
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_device_secrets(value: str) -> Dict[str, str]:
    try:
        secrets = json.loads(value)
    except json.JSONDecodeError as exc:
        raise RelayConfigurationError(
            f"{constants.ENV_DEVICE_SECRETS} is not valid JSON ({exc.msg})"
        ) from None
    if not isinstance(secrets, dict):
        raise RelayConfigurationError(
            f"{constants.ENV_DEVICE_SECRETS} must be a JSON object"
        )
    return {str(device_id): str(secret) for device_id, secret in secrets.items()}


def load_config(
    path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None
) -> RelayConfig:
    """Load configuration from disk and the environment, applying defaults."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    parser = ConfigParser(interpolation=None)
    # device ids are case-sensitive keys
    parser.optionxform = str  # type: ignore[assignment]
    parser.read_dict(
        {
            "server": {
                "host": constants.DEFAULT_HTTP_HOST,
                "port": str(constants.DEFAULT_HTTP_PORT),
                "require_observer_identity": "false",
                "websocket_heartbeat_seconds": "30",
            },
            "auth": {
                "token_secret": constants.DEFAULT_TOKEN_SECRET,
                "token_algorithm": constants.DEFAULT_TOKEN_ALGORITHM,
                "token_leeway_seconds": "0",
                "require_token_expiry": "true",
                "command_roles": "",
                "admin_roles": "admin",
            },
            "hub": {
                "max_pending_events": "100",
            },
            "mqtt": {
                "enabled": "false",
                "broker_host": constants.DEFAULT_BROKER_HOST,
                "broker_port": str(constants.DEFAULT_BROKER_PORT),
                "client_id": constants.APP_NAME,
                "topic_prefix": constants.DEFAULT_TOPIC_PREFIX,
                "qos": "1",
                "retain": "true",
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
            "device_secrets": {},
        }
    )

    if config_path.exists():
        parser.read(config_path)

    if env.get(constants.ENV_TOKEN_SECRET):
        parser.set("auth", "token_secret", env[constants.ENV_TOKEN_SECRET])
    if env.get(constants.ENV_PORT):
        parser.set("server", "port", env[constants.ENV_PORT])

    server = ServerConfig(
        host=parser.get("server", "host"),
        port=parser.getint("server", "port", fallback=constants.DEFAULT_HTTP_PORT),
        require_observer_identity=parser.getboolean(
            "server", "require_observer_identity", fallback=False
        ),
        websocket_heartbeat_seconds=max(
            1.0,
            parser.getfloat("server", "websocket_heartbeat_seconds", fallback=30.0),
        ),
    )

    auth = AuthConfig(
        token_secret=parser.get("auth", "token_secret"),
        token_algorithm=parser.get(
            "auth", "token_algorithm", fallback=constants.DEFAULT_TOKEN_ALGORITHM
        ),
        token_leeway_seconds=max(
            0.0, parser.getfloat("auth", "token_leeway_seconds", fallback=0.0)
        ),
        require_token_expiry=parser.getboolean(
            "auth", "require_token_expiry", fallback=True
        ),
        command_roles=_parse_list(parser.get("auth", "command_roles", fallback="")),
        admin_roles=_parse_list(parser.get("auth", "admin_roles", fallback=""))
        or ["admin"],
    )

    hub = HubConfig(
        max_pending_events=max(
            1, parser.getint("hub", "max_pending_events", fallback=100)
        ),
    )

    mqtt = MqttConfig(
        enabled=parser.getboolean("mqtt", "enabled", fallback=False),
        broker_host=parser.get("mqtt", "broker_host"),
        broker_port=parser.getint(
            "mqtt", "broker_port", fallback=constants.DEFAULT_BROKER_PORT
        ),
        username=parser.get("mqtt", "username", fallback=None),
        password=parser.get("mqtt", "password", fallback=None),
        client_id=parser.get("mqtt", "client_id", fallback=constants.APP_NAME),
        topic_prefix=parser.get("mqtt", "topic_prefix").strip("/"),
        qos=min(2, max(0, parser.getint("mqtt", "qos", fallback=1))),
        retain=parser.getboolean("mqtt", "retain", fallback=True),
    )

    log_path = parser.get("logging", "path", fallback=None)
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path).expanduser() if log_path else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    device_secrets = {
        device_id: secret
        for device_id, secret in parser.items("device_secrets")
        if secret
    }
    if env.get(constants.ENV_DEVICE_SECRETS):
        device_secrets.update(_parse_device_secrets(env[constants.ENV_DEVICE_SECRETS]))

    return RelayConfig(
        server=server,
        auth=auth,
        hub=hub,
        mqtt=mqtt,
        logging=logging_config,
        device_secrets=device_secrets,
        raw=parser,
        path=config_path,
    )
