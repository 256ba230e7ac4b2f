"""Tests for scripts.setup_open_finance."""

from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from scripts.setup_open_finance import (
    ENCRYPTION_KEY_NAME,
    _clean_env_file,
    check,
    generate_key,
    migrate,
)


@pytest.fixture
def env_file(tmp_path):
    """Create a temporary .env file with sample content."""
    p = tmp_path / ".env"
    p.write_text(
        "# Database config\n"
        "DATABASE_URL=sqlite:///./open_finance.db\n"
        "\n"
        "# Open Finance\n"
        "OPEN_FINANCE_CLIENT_ID=my-client-id\n"
        "OPEN_FINANCE_CLIENT_SECRET=my-client-secret\n"
        "OPEN_FINANCE_TOKEN_ENCRYPTION_KEY=\n"
        "OPEN_FINANCE_REDIRECT_URI=https://app.example/callback\n"
    )
    return p


class TestMigrate:
    def test_migrates_non_empty_credentials(self, env_file, capsys):
        with (
            patch("scripts.setup_open_finance.set_credential", return_value=True) as mock_set,
            patch("scripts.setup_open_finance.get_credential", return_value=None),
        ):
            migrate(env_file)

        stored_keys = {call.args[0] for call in mock_set.call_args_list}
        assert stored_keys == {"OPEN_FINANCE_CLIENT_ID", "OPEN_FINANCE_CLIENT_SECRET"}
        output = capsys.readouterr().out
        assert "Stored in keychain (2)" in output
        assert "Skipped (empty/missing in .env) (1)" in output

    def test_skips_already_stored(self, env_file, capsys):
        def fake_get(key):
            return "my-client-id" if key == "OPEN_FINANCE_CLIENT_ID" else None

        with (
            patch("scripts.setup_open_finance.set_credential", return_value=True) as mock_set,
            patch("scripts.setup_open_finance.get_credential", side_effect=fake_get),
        ):
            migrate(env_file)

        stored_keys = {call.args[0] for call in mock_set.call_args_list}
        assert "OPEN_FINANCE_CLIENT_ID" not in stored_keys
        assert "Already in keychain (1)" in capsys.readouterr().out

    def test_clean_removes_only_migrated_lines(self, env_file):
        with (
            patch("scripts.setup_open_finance.set_credential", return_value=True),
            patch("scripts.setup_open_finance.get_credential", return_value=None),
        ):
            migrate(env_file, clean=True)

        content = env_file.read_text()
        assert "OPEN_FINANCE_CLIENT_ID" not in content
        assert "OPEN_FINANCE_CLIENT_SECRET" not in content
        assert "OPEN_FINANCE_REDIRECT_URI=https://app.example/callback" in content
        assert "# Open Finance" in content

    def test_missing_env_file_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            migrate(tmp_path / "missing.env")


class TestCleanEnvFile:
    def test_preserves_comments_and_other_keys(self, env_file):
        _clean_env_file(env_file, ["OPEN_FINANCE_CLIENT_SECRET"])
        content = env_file.read_text()
        assert "OPEN_FINANCE_CLIENT_SECRET" not in content
        assert "OPEN_FINANCE_CLIENT_ID=my-client-id" in content


class TestGenerateKey:
    def test_stores_valid_fernet_key(self):
        with (
            patch("scripts.setup_open_finance.get_credential", return_value=None),
            patch("scripts.setup_open_finance.set_credential", return_value=True) as mock_set,
        ):
            assert generate_key() is True

        key_name, key = mock_set.call_args.args
        assert key_name == ENCRYPTION_KEY_NAME
        Fernet(key.encode())

    def test_refuses_to_replace_existing_key(self):
        with (
            patch("scripts.setup_open_finance.get_credential", return_value="old-key"),
            patch("scripts.setup_open_finance.set_credential") as mock_set,
        ):
            assert generate_key() is False
        mock_set.assert_not_called()

    def test_force_replaces_existing_key(self):
        with (
            patch("scripts.setup_open_finance.get_credential", return_value="old-key"),
            patch("scripts.setup_open_finance.set_credential", return_value=True),
        ):
            assert generate_key(force=True) is True


class TestCheck:
    def test_reports_issues(self, capsys):
        from services.validation import ValidationIssue

        with patch(
            "services.validation.validate_settings",
            return_value=[ValidationIssue("OPEN_FINANCE_CLIENT_ID", "is required", "required")],
        ):
            assert check() == 1
        assert "OPEN_FINANCE_CLIENT_ID: is required" in capsys.readouterr().out

    def test_ok(self, capsys):
        with patch("services.validation.validate_settings", return_value=[]):
            assert check() == 0
        assert "configuration OK" in capsys.readouterr().out
