import json
from pathlib import Path

import jwt
import pytest

from aurora_relay import cli
from aurora_relay.device_auth import compute_mac


@pytest.fixture
def config_path(tmp_path: Path, monkeypatch) -> Path:
    for name in ("AURORA_JWT_SECRET", "AURORA_PORT", "AURORA_DEVICE_SECRETS"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "aurora-relay.cfg"
    path.write_text(
        """
[auth]
token_secret = cli-secret

[mqtt]
password = broker-pass

[device_secrets]
door-1 = door-secret
        """.strip()
        + "\n",
        encoding="utf-8",
    )
    return path


def test_show_config_redacts_secrets(config_path, capsys):
    assert cli.main(["-c", str(config_path), "show-config"]) == 0

    output = capsys.readouterr().out
    assert "[server]" in output
    assert "port = 5000" in output
    assert "cli-secret" not in output
    assert "broker-pass" not in output
    assert "door-secret" not in output
    assert "door-1 = ********" in output


def test_issue_token_signs_with_configured_secret(config_path, capsys):
    exit_code = cli.main(
        ["-c", str(config_path), "issue-token", "--subject", "alice", "--role", "admin"]
    )

    token = capsys.readouterr().out.strip()
    claims = jwt.decode(token, "cli-secret", algorithms=["HS256"])
    assert exit_code == 0
    assert claims["sub"] == "alice"
    assert claims["role"] == "admin"


def test_sign_status_prints_report(config_path, capsys):
    exit_code = cli.main(
        [
            "-c",
            str(config_path),
            "sign-status",
            "--device-id",
            "door-1",
            "--payload",
            '{"state": "open"}',
        ]
    )

    report = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert report == {
        "deviceId": "door-1",
        "payload": {"state": "open"},
        "mac": compute_mac("door-secret", {"state": "open"}),
    }


@pytest.mark.parametrize(
    "device_id, payload",
    [("garage", '{"state": "up"}'), ("door-1", "not json"), ("door-1", "[1]")],
)
def test_sign_status_failures(config_path, device_id, payload):
    exit_code = cli.main(
        [
            "-c",
            str(config_path),
            "sign-status",
            "--device-id",
            device_id,
            "--payload",
            payload,
        ]
    )

    assert exit_code == 1


def test_invalid_environment_fails(config_path, monkeypatch):
    monkeypatch.setenv("AURORA_DEVICE_SECRETS", "{")

    assert cli.main(["-c", str(config_path), "show-config"]) == 1
