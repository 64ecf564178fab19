"""Utility for verifying that the relay's configuration is usable before start-up.

The tool loads the given ``.env`` file and checks that:

1. ``AppSettings`` can be instantiated,
2. ``ENCRYPTION_KEY`` is a valid 32-byte hex key and ``API_KEY`` is set,
3. ``providers.yml`` parses, reporting providers skipped for missing credentials.

Example usages::

    python -m scripts.check_env check --env-file /opt/relay/.env

    # Print a fresh ENCRYPTION_KEY value.
    python -m scripts.check_env generate-key
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from tokenrelay.core.config import AppSettings
from tokenrelay.core.providers import load_registry
from tokenrelay.services.token_cipher import (
    CipherConfigurationError,
    TokenCipherService,
    generate_key,
)

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_RUNTIME_ERROR = 5


def _validate(env_file: Path) -> int:
    load_dotenv(env_file, override=True)
    settings = AppSettings()  # type: ignore[call-arg]

    TokenCipherService(key_hex=settings.security.encryption_key).ensure_ready()
    if not settings.security.api_key:
        print("API_KEY is not set; protected routes would reject every call.", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    registry = load_registry(settings.providers.providers_file, os.environ)
    for slug, reason in sorted(registry.skipped.items()):
        print(f"Provider {slug} skipped: {reason}")
    if not registry.providers:
        print("Warning: no providers are configured.", file=sys.stderr)
    else:
        print(f"Providers ready: {', '.join(sorted(registry.providers))}")
    print("Configuration OK.")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate relay configuration or generate an encryption key."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    check_parser = subparsers.add_parser(
        "check",
        help="Validate settings, encryption key and provider registry.",
    )
    check_parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the repo root).",
    )

    subparsers.add_parser(
        "generate-key",
        help="Print a random 64-char hex value suitable for ENCRYPTION_KEY.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "generate-key":
        print(generate_key())
        return EXIT_OK

    env_file: Path = args.env_file
    if not env_file.exists():
        print(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    try:
        return _validate(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except CipherConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    except (OSError, yaml.YAMLError, ValueError) as exc:
        print(f"Could not load provider registry: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
