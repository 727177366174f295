"""Operational checks for the mail vault configuration.

Commands::

    # Load settings from an env file and build the vault from them, so a
    # missing Google credential or a malformed TOKEN_ENCRYPTION_KEY is caught
    # before the API starts.
    python -m scripts.check_env check --env-file /opt/mailvault/.env

    # Print a fresh value for TOKEN_ENCRYPTION_KEY.
    python -m scripts.check_env generate-key
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError

from mailvault.core.config import AppSettings, _load_env_file
from mailvault.core.errors import ConfigurationError
from mailvault.services.oauth_state import OAuthStateManager
from mailvault.services.token_cipher import TokenCipherService

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_RUNTIME_ERROR = 5


def _check(env_file: Path) -> int:
    if not env_file.exists():
        print(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    _load_env_file(str(env_file))
    try:
        settings = AppSettings()  # type: ignore[call-arg]
        TokenCipherService(key=settings.security.token_encryption_key)
        OAuthStateManager(
            secret_key=settings.google.client_secret,
            ttl_seconds=settings.oauth.state_ttl_seconds,
        )
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except ConfigurationError as exc:
        print(f"Settings validation failed: {exc.message}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    print(
        f"Configuration OK (environment={settings.environment}, "
        f"scopes={' '.join(settings.oauth.scopes)}, "
        f"database={settings.storage.database_path})"
    )
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mail vault configuration helpers.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    check_parser = subparsers.add_parser(
        "check",
        help="Validate settings and the vault key from an env file.",
    )
    check_parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the repo root).",
    )

    subparsers.add_parser(
        "generate-key",
        help="Print a new random value for TOKEN_ENCRYPTION_KEY.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "generate-key":
        print(TokenCipherService.generate_key())
        return EXIT_OK
    return _check(args.env_file)


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
