"""Unit tests for credential tokens and the identity directory."""

from __future__ import annotations

from datetime import timedelta

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from conftest import NOW
from livebid.bidding.errors import Unauthenticated
from livebid.identity.tokens import Authenticator, issue_token


@pytest.fixture
def authenticator(directory, issuer_keys):
    _, public_pem = issuer_keys
    return Authenticator(directory, public_pem, max_age_seconds=3600, max_skew_ms=500)


class TestAuthenticator:
    """Tokens resolve to an active identity or raise Unauthenticated."""

    def test_valid_token_resolves_identity(self, authenticator, issuer_keys):
        private_pem, _ = issuer_keys
        token = issue_token("usr_alice", private_pem, issued_at=NOW)

        identity = authenticator.authenticate(token, now=NOW + timedelta(minutes=5))

        assert identity.identity_id == "usr_alice"
        assert identity.company == "Martin Autos"

    @pytest.mark.parametrize("token", [None, "", "no-dot-here", "a.b.c"])
    def test_malformed_tokens(self, authenticator, token):
        with pytest.raises(Unauthenticated):
            authenticator.authenticate(token, now=NOW)

    def test_tampered_claims_fail_signature(self, authenticator, issuer_keys):
        private_pem, _ = issuer_keys
        genuine = issue_token("usr_alice", private_pem, issued_at=NOW)
        forged_claims = issue_token("usr_bob", private_pem, issued_at=NOW).split(".")[0]
        forged = f"{forged_claims}.{genuine.split('.')[1]}"

        with pytest.raises(Unauthenticated):
            authenticator.authenticate(forged, now=NOW)

    def test_foreign_issuer_is_rejected(self, authenticator):
        stranger = Ed25519PrivateKey.generate().private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()

        with pytest.raises(Unauthenticated):
            authenticator.authenticate(issue_token("usr_alice", stranger, issued_at=NOW), now=NOW)

    def test_expired_token(self, authenticator, issuer_keys):
        private_pem, _ = issuer_keys
        token = issue_token("usr_alice", private_pem, issued_at=NOW - timedelta(hours=2))

        with pytest.raises(Unauthenticated):
            authenticator.authenticate(token, now=NOW)

    def test_token_from_the_future(self, authenticator, issuer_keys):
        private_pem, _ = issuer_keys
        token = issue_token("usr_alice", private_pem, issued_at=NOW + timedelta(seconds=5))

        with pytest.raises(Unauthenticated):
            authenticator.authenticate(token, now=NOW)

    def test_small_skew_is_tolerated(self, authenticator, issuer_keys):
        private_pem, _ = issuer_keys
        token = issue_token("usr_alice", private_pem, issued_at=NOW + timedelta(milliseconds=200))

        assert authenticator.authenticate(token, now=NOW).identity_id == "usr_alice"

    @pytest.mark.parametrize("subject", ["usr_nobody", "usr_suspended"])
    def test_unknown_or_inactive_identity(self, authenticator, issuer_keys, subject):
        private_pem, _ = issuer_keys

        with pytest.raises(Unauthenticated):
            authenticator.authenticate(issue_token(subject, private_pem, issued_at=NOW), now=NOW)

    def test_missing_issuer_key_rejects_everything(self, directory, issuer_keys):
        private_pem, _ = issuer_keys
        authenticator = Authenticator(directory, "", max_age_seconds=3600, max_skew_ms=500)

        with pytest.raises(Unauthenticated):
            authenticator.authenticate(issue_token("usr_alice", private_pem, issued_at=NOW), now=NOW)


class TestIdentityDirectory:
    """YAML-backed identity lookup."""

    def test_inactive_identities_are_hidden(self, directory):
        assert directory.get("usr_suspended") is None
        assert {entry.identity.identity_id for entry in directory.all()} >= {"usr_suspended"}

    def test_reload_picks_up_changes(self, directory, identities_path):
        identities_path.write_text("identities:\n  - id: usr_new\n    name: New Dealer\n")

        directory.reload()

        assert directory.get("usr_alice") is None
        assert directory.get("usr_new").name == "New Dealer"
