"""
Unit tests for User Store.

Tests user CRUD operations, uniqueness, secret handling and persistence.
"""

import time
import threading
from unittest.mock import patch

import pytest

from accounts.auth import UserStore, User, DuplicateKeyError, IdentityValidationError


class TestUserStore:
    """Tests for UserStore class."""

    @pytest.mark.unit
    def test_create_user(self, user_store, test_config):
        """Test creating a new user."""
        user = user_store.create_user(
            name="  Ana  ",
            phone=test_config["test_phone"],
            password=test_config["test_password"],
            email="  Ana@X.com "
        )

        assert user.user_id is not None
        assert user.name == "Ana"
        assert user.email == "ana@x.com"
        assert user.phone == test_config["test_phone"]
        assert user.role == "User"
        assert user.card_data == {}
        assert user.created_at and user.updated_at

    @pytest.mark.unit
    def test_create_returns_no_password_hash(self, user_store, sample_user):
        assert sample_user.password_hash is None

    @pytest.mark.unit
    def test_reads_omit_password_unless_requested(self, user_store, sample_user, test_config):
        assert user_store.get_by_id(sample_user.user_id).password_hash is None
        assert user_store.get_by_email(test_config["test_email"]).password_hash is None
        assert all(u.password_hash is None for u in user_store.list_users())

        with_password = user_store.get_by_email(test_config["test_email"], include_password=True)
        assert with_password.password_hash.startswith("$2b$")
        assert with_password.password_hash != test_config["test_password"]

    @pytest.mark.unit
    def test_password_required_unless_otp_login(self, user_store):
        with pytest.raises(IdentityValidationError, match="Password is required"):
            user_store.create_user(name="B", phone="+15550002")

        user = user_store.create_user(name="B", phone="+15550002", is_otp_login=True)
        assert user.is_otp_login is True
        assert user.email is None
        assert user_store.get_by_id(user.user_id, include_password=True).password_hash is None

    @pytest.mark.unit
    def test_short_password_rejected(self, user_store):
        with pytest.raises(IdentityValidationError, match="at least 6"):
            user_store.create_user(name="B", phone="+15550002", password="12345")

    @pytest.mark.unit
    def test_create_duplicate_email_fails(self, user_store, sample_user, test_config):
        with pytest.raises(DuplicateKeyError) as exc_info:
            user_store.create_user(
                name="Other",
                phone="+15550009",
                password="another1",
                email=test_config["test_email"].upper()
            )

        assert exc_info.value.field_name == "email"

    @pytest.mark.unit
    def test_create_duplicate_phone_fails(self, user_store, sample_user):
        with pytest.raises(DuplicateKeyError, match="already exists") as exc_info:
            user_store.create_user(name="Other", phone="+1 555 0001", password="another1")

        assert exc_info.value.field_name == "phone"

    @pytest.mark.unit
    def test_missing_emails_do_not_collide(self, user_store):
        user_store.create_user(name="B", phone="+15550002", is_otp_login=True)
        user_store.create_user(name="C", phone="+15550003", is_otp_login=True)

        assert len(user_store.list_users()) == 2

    @pytest.mark.unit
    @pytest.mark.parametrize("kwargs, message", [
        ({"name": "   "}, "Name is required"),
        ({"phone": "invalid"}, "Invalid phone"),
        ({"email": "not-an-email"}, "Invalid email"),
        ({"role": "SuperAdmin"}, "Invalid role"),
        ({"favourite_colour": "red"}, "Unknown profile fields"),
    ])
    def test_validation(self, user_store, kwargs, message):
        fields = {"name": "B", "phone": "+15550002", "password": "secret1"}
        fields.update(kwargs)

        with pytest.raises(IdentityValidationError, match=message):
            user_store.create_user(**fields)

    @pytest.mark.unit
    def test_profile_fields_and_card_data(self, user_store):
        user = user_store.create_user(
            name="B",
            phone="+15550002",
            password="secret1",
            role="Admin",
            city=" Pune ",
            pincode="411001",
            card_data={"last4": "4242"}
        )

        loaded = user_store.get_by_id(user.user_id)
        assert loaded.role == "Admin"
        assert loaded.city == "Pune"
        assert loaded.pincode == "411001"
        assert loaded.card_data == {"last4": "4242"}

    @pytest.mark.unit
    def test_get_by_phone_normalizes(self, user_store, sample_user):
        assert user_store.get_by_phone("+1 (555) 0001").user_id == sample_user.user_id
        assert user_store.get_by_phone("+15550099") is None
        assert user_store.get_by_phone("bad") is None

    @pytest.mark.unit
    def test_get_by_id_not_found(self, user_store):
        assert user_store.get_by_id("non-existent-id") is None

    @pytest.mark.unit
    def test_update_user_keeps_password(self, user_store, sample_user, test_config):
        sample_user.city = "Lisbon"
        updated = user_store.update_user(sample_user)

        assert updated.city == "Lisbon"
        stored = user_store.get_by_id(sample_user.user_id, include_password=True)
        assert user_store.password_handler.verify(test_config["test_password"], stored.password_hash)

    @pytest.mark.unit
    def test_update_user_rejects_taken_phone(self, user_store, sample_user):
        other = user_store.create_user(name="B", phone="+15550002", password="secret1")
        other.phone = sample_user.phone

        with pytest.raises(DuplicateKeyError):
            user_store.update_user(other)

    @pytest.mark.unit
    def test_set_password_rehashes(self, user_store, sample_user, test_config):
        before = user_store.get_by_id(sample_user.user_id, include_password=True).password_hash

        user_store.set_password(sample_user.user_id, "newsecret")

        after = user_store.get_by_id(sample_user.user_id, include_password=True).password_hash
        assert after != before
        assert user_store.password_handler.verify("newsecret", after)
        assert not user_store.password_handler.verify(test_config["test_password"], after)

    @pytest.mark.unit
    def test_otp_challenge_lazy_expiry(self, user_store, sample_user):
        user = user_store.set_otp_challenge(sample_user.user_id, "123456", time.time() + 300)
        assert user.is_otp_valid() is True

        user = user_store.set_otp_challenge(sample_user.user_id, "123456", time.time() - 1)
        assert user.otp_challenge is not None
        assert user.is_otp_valid() is False

        user = user_store.clear_otp_challenge(sample_user.user_id)
        assert user.otp_challenge is None

    @pytest.mark.unit
    def test_redeem_reset_challenge_once(self, user_store, sample_user):
        user_store.set_reset_challenge(sample_user.user_id, "tok", time.time() + 3600)

        assert user_store.redeem_reset_challenge(sample_user.user_id, "other", "newsecret") is None
        redeemed = user_store.redeem_reset_challenge(sample_user.user_id, "tok", "newsecret")
        assert redeemed.reset_challenge is None
        assert redeemed.password_hash is None
        assert user_store.redeem_reset_challenge(sample_user.user_id, "tok", "newsecret") is None

        stored = user_store.get_by_id(sample_user.user_id, include_password=True)
        assert user_store.password_handler.verify("newsecret", stored.password_hash)

    @pytest.mark.unit
    def test_redeem_expired_reset_challenge(self, user_store, sample_user):
        user_store.set_reset_challenge(sample_user.user_id, "tok", time.time() - 1)

        assert user_store.redeem_reset_challenge(sample_user.user_id, "tok", "newsecret") is None

    @pytest.mark.unit
    def test_failed_hash_keeps_reset_challenge(self, user_store, sample_user, test_config):
        """A reset that cannot hash the new password leaves the token usable."""
        user_store.set_reset_challenge(sample_user.user_id, "tok", time.time() + 3600)

        with patch.object(user_store.password_handler, "hash", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                user_store.redeem_reset_challenge(sample_user.user_id, "tok", "newsecret")

        stored = user_store.get_by_id(sample_user.user_id, include_password=True)
        assert stored.reset_challenge["token"] == "tok"
        assert user_store.password_handler.verify(test_config["test_password"], stored.password_hash)
        assert user_store.redeem_reset_challenge(sample_user.user_id, "tok", "newsecret") is not None

    @pytest.mark.unit
    def test_redeem_rejects_weak_password(self, user_store, sample_user):
        user_store.set_reset_challenge(sample_user.user_id, "tok", time.time() + 3600)

        with pytest.raises(IdentityValidationError):
            user_store.redeem_reset_challenge(sample_user.user_id, "tok", "123")

        assert user_store.get_by_id(sample_user.user_id).reset_challenge is not None

    @pytest.mark.unit
    def test_mutating_unknown_user(self, user_store):
        with pytest.raises(KeyError):
            user_store.set_password("missing", "secret1")

    @pytest.mark.unit
    def test_delete_user(self, user_store, sample_user):
        assert user_store.delete_user(sample_user.user_id) is True
        assert user_store.get_by_id(sample_user.user_id) is None
        assert user_store.delete_user(sample_user.user_id) is False

    @pytest.mark.unit
    def test_public_dict_omits_secrets(self, sample_user):
        data = sample_user.to_public_dict()

        assert "password_hash" not in data
        assert "otp_challenge" not in data
        assert "reset_challenge" not in data
        assert data["email"] == "a@x.com"

    @pytest.mark.unit
    def test_persistence(self, temp_user_file, test_config):
        """Test that data persists to file."""
        store1 = UserStore(file_path=temp_user_file)
        user = store1.create_user(
            name=test_config["test_user_name"],
            phone=test_config["test_phone"],
            password=test_config["test_password"]
        )

        store2 = UserStore(file_path=temp_user_file)
        loaded = store2.get_by_phone(test_config["test_phone"])

        assert loaded.user_id == user.user_id
        assert isinstance(loaded, User)

    @pytest.mark.unit
    @pytest.mark.slow
    def test_concurrent_duplicate_registration(self, user_store):
        """Only one of several racing creates with the same phone succeeds."""
        outcomes = []
        start = threading.Barrier(5)

        def attempt(i):
            start.wait()
            try:
                user_store.create_user(name=f"U{i}", phone="+15550042", is_otp_login=True)
                outcomes.append("ok")
            except DuplicateKeyError:
                outcomes.append("duplicate")

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("duplicate") == 4
        assert len(user_store.list_users()) == 1
