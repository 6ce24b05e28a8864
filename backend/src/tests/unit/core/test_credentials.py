"""
Unit tests for the credential gateway.

Covers envelope format, account binding, tamper detection and the per-account
DEK cache.
"""

import base64

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from addonsync.core.credentials import KEY_BYTES, CredentialGateway, DekCache, get_credential_gateway
from addonsync.core.exceptions import CredentialError


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def gateway():
    return CredentialGateway(server_key="unit-test-secret", dek_ttl_seconds=60)


class TestEnvelope:
    def test_roundtrip(self, gateway):
        envelope = gateway.encrypt("acc-1", "my-auth-key")
        assert gateway.decrypt("acc-1", envelope) == "my-auth-key"

    def test_envelope_has_iv_ciphertext_tag(self, gateway):
        iv, ciphertext, tag = gateway.encrypt("acc-1", "secret").split(":")
        assert len(base64.b64decode(iv)) == 12
        assert len(base64.b64decode(tag)) == 16
        assert len(base64.b64decode(ciphertext)) == len("secret")

    def test_fresh_iv_per_encryption(self, gateway):
        assert gateway.encrypt("acc-1", "same") != gateway.encrypt("acc-1", "same")

    def test_other_account_cannot_decrypt(self, gateway):
        envelope = gateway.encrypt("acc-1", "secret")
        with pytest.raises(CredentialError):
            gateway.decrypt("acc-2", envelope)

    def test_other_server_key_cannot_decrypt(self, gateway):
        envelope = gateway.encrypt("acc-1", "secret")
        other = CredentialGateway(server_key="another-secret", dek_ttl_seconds=60)
        with pytest.raises(CredentialError):
            other.decrypt("acc-1", envelope)

    def test_tampered_tag_is_rejected(self, gateway):
        iv, ciphertext, tag = gateway.encrypt("acc-1", "secret").split(":")
        raw_tag = bytearray(base64.b64decode(tag))
        raw_tag[0] ^= 0x01
        tampered = f"{iv}:{ciphertext}:{base64.b64encode(bytes(raw_tag)).decode()}"
        with pytest.raises(CredentialError, match="decryption failed"):
            gateway.decrypt("acc-1", tampered)

    @pytest.mark.parametrize("envelope", ["", "not-an-envelope", "a:b", "!!:??:##", "AAAA:AAAA:AAAA"])
    def test_malformed_envelopes(self, gateway, envelope):
        with pytest.raises(CredentialError):
            gateway.decrypt("acc-1", envelope)

    def test_empty_plaintext_rejected(self, gateway):
        with pytest.raises(CredentialError):
            gateway.encrypt("acc-1", "")

    def test_json_roundtrip(self, gateway):
        value = {"id": "org.example", "catalogs": [{"type": "movie", "id": "top"}]}
        assert gateway.decrypt_json("acc-1", gateway.encrypt_json("acc-1", value)) == value

    def test_decrypt_json_rejects_non_json(self, gateway):
        with pytest.raises(CredentialError, match="not JSON"):
            gateway.decrypt_json("acc-1", gateway.encrypt("acc-1", "plain text"))

    def test_missing_server_key(self):
        gateway = CredentialGateway(server_key="", dek_ttl_seconds=60)
        with pytest.raises(CredentialError, match="not configured"):
            gateway.encrypt("acc-1", "secret")

    def test_base64_server_key_is_used_directly(self):
        raw = base64.b64encode(bytes(range(32))).decode()
        a = CredentialGateway(server_key=raw, dek_ttl_seconds=60)
        b = CredentialGateway(server_key=raw, dek_ttl_seconds=60)
        assert a.decrypt("acc-1", b.encrypt("acc-1", "x")) == "x"

    @settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(account_id=st.text(min_size=1, max_size=20), plaintext=st.text(min_size=1, max_size=200))
    def test_roundtrip_any_text(self, account_id, plaintext):
        gateway = CredentialGateway(server_key="property-secret", dek_ttl_seconds=60)
        assert gateway.decrypt(account_id, gateway.encrypt(account_id, plaintext)) == plaintext


class TestDekCache:
    def test_derived_key_is_cached(self):
        clock = FakeClock()
        gateway = CredentialGateway(server_key="s", dek_ttl_seconds=60, clock=clock)
        key = gateway.get_account_dek("acc-1")
        assert len(key) == KEY_BYTES
        assert len(gateway.dek_cache) == 1
        assert gateway.get_account_dek("acc-1") is key

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = DekCache(ttl_seconds=10, clock=clock)
        cache.put("acc-1", b"k" * 32)
        clock.now += 9
        assert cache.get("acc-1") == b"k" * 32
        clock.now += 1
        assert cache.get("acc-1") is None
        assert len(cache) == 0

    def test_expired_key_is_rederived_identically(self):
        clock = FakeClock()
        gateway = CredentialGateway(server_key="s", dek_ttl_seconds=10, clock=clock)
        envelope = gateway.encrypt("acc-1", "secret")
        clock.now += 11
        assert gateway.decrypt("acc-1", envelope) == "secret"

    def test_put_replaces_whole_entry(self):
        cache = DekCache(ttl_seconds=10, clock=FakeClock())
        cache.put("acc-1", b"a" * 32)
        cache.put("acc-1", b"b" * 32)
        assert cache.get("acc-1") == b"b" * 32

    def test_explicit_dek_must_be_32_bytes(self, gateway):
        with pytest.raises(CredentialError):
            gateway.set_account_dek("acc-1", b"short")

    def test_explicit_dek_replaces_derived(self, gateway):
        envelope = gateway.encrypt("acc-1", "secret")
        gateway.set_account_dek("acc-1", b"x" * 32)
        with pytest.raises(CredentialError):
            gateway.decrypt("acc-1", envelope)
        gateway.clear_account_dek("acc-1")
        assert gateway.decrypt("acc-1", envelope) == "secret"


def test_global_gateway_uses_settings_key():
    gateway = get_credential_gateway()
    assert gateway is get_credential_gateway()
    assert gateway.decrypt("acc-1", gateway.encrypt("acc-1", "secret")) == "secret"
