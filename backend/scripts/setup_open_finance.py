#!/usr/bin/env python3
"""Open Finance credential setup.

Stores the OAuth client credentials and the token encryption key in the
OS keychain (via ``keyring``) and checks the resulting configuration.

Usage:
    python -m scripts.setup_open_finance generate-key        # new Fernet key -> keychain
    python -m scripts.setup_open_finance migrate [--clean]   # .env secrets -> keychain
    python -m scripts.setup_open_finance check               # report configuration issues
"""

import argparse
import re
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import dotenv_values

from services.credential_manager import CREDENTIAL_KEYS, get_credential, set_credential
from services.token_cipher import TokenCipher

ENCRYPTION_KEY_NAME = "OPEN_FINANCE_TOKEN_ENCRYPTION_KEY"


def migrate(env_path: Path, *, clean: bool = False) -> None:
    """Read ``.env`` and store its Open Finance secrets in the keychain.

    Args:
        env_path: Path to the ``.env`` file.
        clean: If ``True``, rewrite the ``.env`` file without the
            migrated credential lines.
    """
    if not env_path.exists():
        print(f"No .env file found at {env_path}")
        sys.exit(1)

    values = dotenv_values(env_path)

    migrated: list[str] = []
    skipped_empty: list[str] = []
    skipped_exists: list[str] = []
    failed: list[str] = []

    for key in sorted(CREDENTIAL_KEYS):
        value = values.get(key)
        if not value:
            skipped_empty.append(key)
            continue

        if get_credential(key) == value:
            skipped_exists.append(key)
            continue

        if set_credential(key, value):
            migrated.append(key)
        else:
            failed.append(key)

    print()
    print("=" * 60)
    print("Migration Summary")
    print("=" * 60)
    for title, marker, keys in (
        ("Stored in keychain", "+", migrated),
        ("Already in keychain", "=", skipped_exists),
        ("Skipped (empty/missing in .env)", "-", skipped_empty),
        ("Failed", "!", failed),
    ):
        if keys:
            print(f"\n  {title} ({len(keys)}):")
            for key in keys:
                print(f"    {marker} {key}")
    print()

    if clean and (migrated or skipped_exists):
        _clean_env_file(env_path, migrated + skipped_exists)
    elif clean:
        print("Nothing to clean from .env.")


def _clean_env_file(env_path: Path, keys_to_remove: list[str]) -> None:
    """Remove credential lines from .env, preserving everything else."""
    lines = env_path.read_text().splitlines(keepends=True)
    pattern = re.compile(
        r"^(" + "|".join(re.escape(k) for k in keys_to_remove) + r")\s*="
    )
    cleaned = [line for line in lines if not pattern.match(line)]
    env_path.write_text("".join(cleaned))
    print(f"Removed {len(keys_to_remove)} credential(s) from {env_path}")


def generate_key(*, force: bool = False) -> bool:
    """Generate a Fernet key and store it as the token encryption key.

    Refuses to replace an existing key unless ``force`` is set: tokens
    encrypted under the old key become unreadable.
    """
    if get_credential(ENCRYPTION_KEY_NAME) and not force:
        print(f"{ENCRYPTION_KEY_NAME} is already set in the keychain.")
        print("Re-run with --force to replace it (stored consents must then be re-authorized).")
        return False

    if not set_credential(ENCRYPTION_KEY_NAME, TokenCipher.generate_key()):
        print(f"Could not store {ENCRYPTION_KEY_NAME} in the keychain.")
        return False
    print(f"Stored a new {ENCRYPTION_KEY_NAME} in the keychain.")
    return True


def check(certificates_required: bool = False) -> int:
    """Print configuration issues; returns the number found."""
    from config import settings
    from services.validation import validate_settings

    issues = validate_settings(settings, certificates_required=certificates_required)
    if not issues:
        print("Open Finance configuration OK.")
        return 0
    print(f"Found {len(issues)} configuration issue(s):")
    for issue in issues:
        print(f"  ! {issue.field}: {issue.message}")
    return len(issues)


def main():
    parser = argparse.ArgumentParser(description="Set up Open Finance credentials")
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_parser = subparsers.add_parser("migrate", help="Move .env secrets into the keychain")
    migrate_parser.add_argument(
        "--clean",
        action="store_true",
        help="Remove migrated credentials from .env after storing in keychain",
    )
    migrate_parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(__file__).parent.parent / ".env",
        help="Path to .env file (default: backend/.env)",
    )

    key_parser = subparsers.add_parser("generate-key", help="Create the token encryption key")
    key_parser.add_argument("--force", action="store_true", help="Replace an existing key")

    check_parser = subparsers.add_parser("check", help="Validate the current configuration")
    check_parser.add_argument(
        "--certificates",
        action="store_true",
        help="Also require mutual TLS certificate paths",
    )

    args = parser.parse_args()
    if args.command == "migrate":
        migrate(args.env_file, clean=args.clean)
    elif args.command == "generate-key":
        sys.exit(0 if generate_key(force=args.force) else 1)
    else:
        sys.exit(1 if check(args.certificates) else 0)


if __name__ == "__main__":
    main()
