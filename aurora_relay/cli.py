"""Command-line interface for aurora-relay."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

from . import constants
from .app import RelayApp
from .config import load_config
from .device_auth import compute_mac
from .errors import RelayConfigurationError
from .identity import issue_token

LOGGER = logging.getLogger(__name__)

_REDACTED = "********"
_SECRET_OPTIONS = {("auth", "token_secret"), ("mqtt", "password")}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aurora-relay", description="Aurora smart-home command/state relay"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the relay service")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration with secrets redacted"
    )

    token_parser = subparsers.add_parser(
        "issue-token", help="Sign a development identity token"
    )
    token_parser.add_argument("--subject", required=True, help="Token subject")
    token_parser.add_argument("--role", default=None, help="Role claim, e.g. admin")
    token_parser.add_argument(
        "--expires-in",
        type=int,
        default=3600,
        help="Lifetime in seconds (default: 3600)",
    )

    sign_parser = subparsers.add_parser(
        "sign-status", help="Print the MAC a device must attach to a status payload"
    )
    sign_parser.add_argument("--device-id", required=True)
    sign_parser.add_argument(
        "--payload", required=True, help="Status payload as a JSON object"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except RelayConfigurationError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 1

    if args.command == "start":
        RelayApp.start(config)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                if section == "device_secrets" or (section, key) in _SECRET_OPTIONS:
                    value = _REDACTED
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "issue-token":
        print(
            issue_token(
                config.auth.token_secret,
                args.subject,
                role=args.role,
                expires_in=timedelta(seconds=args.expires_in),
                algorithm=config.auth.token_algorithm,
            )
        )
        return 0

    if args.command == "sign-status":
        secret = config.device_secrets.get(args.device_id)
        if not secret:
            LOGGER.error("No secret provisioned for device %s", args.device_id)
            return 1
        try:
            payload = json.loads(args.payload)
        except json.JSONDecodeError as exc:
            LOGGER.error("Payload is not valid JSON: %s", exc.msg)
            return 1
        if not isinstance(payload, dict):
            LOGGER.error("Payload must be a JSON object")
            return 1
        print(
            json.dumps(
                {
                    "deviceId": args.device_id,
                    "payload": payload,
                    "mac": compute_mac(secret, payload),
                }
            )
        )
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
