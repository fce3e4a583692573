"""
Tests for authentication module.

Tests cover:
- Staff CSV loading
- Credential verification (success/failure)
- Role assignment
- Session token creation, decoding and tampering
"""

from pathlib import Path

from app.auth import UserStore, create_session_token, decode_session_token
from app.models import UserInfo


class TestUserStoreLoading:
    """Test staff loading from CSV."""

    def test_loads_valid_rows(self, store: UserStore):
        assert store.user_count == 2  # unknown role and empty username skipped

    def test_missing_csv_does_not_crash(self, tmp_path: Path):
        """Missing CSV file should log error but not crash."""
        store = UserStore(csv_path=tmp_path / "nonexistent.csv")
        assert store.user_count == 0

    def test_unknown_role_skipped(self, store: UserStore):
        assert store.verify("ghost", "ghost123") is None

    def test_username_normalized_to_lowercase(self, store: UserStore):
        result = store.verify("reception", "recep123")
        assert result is not None
        assert result.username == "reception"


class TestCredentialVerification:
    """Test login verification."""

    def test_valid_credentials(self, store: UserStore):
        result = store.verify("admin", "admin123")
        assert result is not None
        assert result.name == "Dr. Admin"
        assert result.x_number == "A00001/00"

    def test_wrong_password(self, store: UserStore):
        assert store.verify("admin", "wrong") is None

    def test_unknown_username(self, store: UserStore):
        assert store.verify("nobody", "admin123") is None

    def test_whitespace_stripped(self, store: UserStore):
        assert store.verify("  ADMIN ", " admin123 ") is not None


class TestRoleAssignment:
    """Test role mapping from CSV."""

    def test_admin_role(self, store: UserStore):
        result = store.verify("admin", "admin123")
        assert result is not None
        assert result.role == "admin"

    def test_receptionist_role(self, store: UserStore):
        result = store.verify("Reception", "recep123")
        assert result is not None
        assert result.role == "receptionist"


class TestSessionToken:
    """Test session token creation and decoding."""

    def _user(self) -> UserInfo:
        return UserInfo(
            username="reception",
            name="Mary Johnson",
            x_number="R00001/00",
            role="receptionist",
        )

    def test_create_and_decode(self):
        decoded = decode_session_token(create_session_token(self._user()))
        assert decoded == self._user()

    def test_invalid_token_returns_none(self):
        assert decode_session_token("completely-invalid-token") is None

    def test_tampered_token_returns_none(self):
        token = create_session_token(self._user())
        assert decode_session_token(token[:-5] + "XXXXX") is None

    def test_empty_token_returns_none(self):
        assert decode_session_token("") is None


class TestNonAsciiPasswords:
    """Test that non-ASCII passwords are compared, not rejected with an error."""

    def test_non_ascii_attempt_is_wrong_password(self, store: UserStore):
        assert store.verify("admin", "pässwörd") is None

    def test_non_ascii_stored_password(self, tmp_path: Path):
        csv_path = tmp_path / "staff.csv"
        csv_path.write_text(
            "USERNAME,PASSWORD,NAME,X_NUMBER,ROLE\n"
            "nurse,pässwörd,Zoë Müller,N00002/00,receptionist\n",
            encoding="utf-8",
        )
        store = UserStore(csv_path=csv_path)
        result = store.verify("nurse", "pässwörd")
        assert result is not None
        assert result.name == "Zoë Müller"
        assert store.verify("nurse", "passwort") is None
