import io
import ssl

import pytest

from connwright import (
    DefaultHostnameVerifier,
    KeyManager,
    KeyStore,
    ManagerConfig,
    NoopHostnameVerifier,
    TLSConfigurationError,
    TrustAllStrategy,
    TrustManager,
    TrustSource,
    get_hostname_verifier,
    load_keystore,
    resolve_tls_context,
)
from connwright.tls import as_manager_tuple, certificate_matches
from conftest import STORE_PASSWORD


class TestPrecedence:
    def test_default_when_nothing_is_configured(self):
        tls = resolve_tls_context(ManagerConfig())

        assert tls.source is TrustSource.DEFAULT
        assert tls.ssl_context.verify_mode == ssl.CERT_REQUIRED
        assert tls.trust_strategy is None
        assert isinstance(get_hostname_verifier(ManagerConfig()), DefaultHostnameVerifier)

    def test_insecure_trusts_everything(self):
        config = ManagerConfig(insecure=True)
        tls = resolve_tls_context(config)

        assert tls.source is TrustSource.INSECURE
        assert not tls.verifies_peer
        assert isinstance(tls.trust_strategy, TrustAllStrategy)
        assert tls.trust_strategy.is_trusted([], "RSA")
        assert get_hostname_verifier(config).verify("anything.invalid", None)

    def test_insecure_context_keeps_hardening(self):
        ctx = resolve_tls_context(ManagerConfig(insecure=True)).ssl_context

        assert ctx.verify_mode == ssl.CERT_NONE
        assert ctx.check_hostname is False
        assert ctx.minimum_version == ssl.TLSVersion.TLSv1_2
        assert ctx.options & ssl.OP_NO_COMPRESSION

    def test_stores_win_over_insecure(self, certs):
        config = ManagerConfig(
            insecure=True,
            trust_store=certs.trust_p12,
            trust_store_pass=STORE_PASSWORD,
        )
        tls = resolve_tls_context(config)

        assert tls.source is TrustSource.STORES
        assert tls.verifies_peer
        assert tls.trust_strategy is None

    def test_managers_win_over_stores(self, certs):
        # the keystore is garbage, it must never be read
        config = ManagerConfig(
            trust_managers=TrustManager(cafile=certs.ca_pem),
            keystore=b"not a keystore",
        )
        tls = resolve_tls_context(config)

        assert tls.source is TrustSource.MANAGERS
        assert tls.verifies_peer

    def test_managers_win_over_insecure(self, certs):
        config = ManagerConfig(
            insecure=True,
            key_managers=KeyManager(certs.client_pem, certs.client_key_pem),
        )

        assert resolve_tls_context(config).source is TrustSource.MANAGERS

    def test_resolved_contexts_leave_hostname_checks_to_verifier(self, certs):
        config = ManagerConfig(trust_store=certs.ca_pem, trust_store_type="pem")

        assert resolve_tls_context(config).ssl_context.check_hostname is False


class TestKeystores:
    def test_pkcs12_identity(self, certs):
        store = load_keystore(certs.client_p12, "pkcs12", STORE_PASSWORD)

        assert store.has_identity
        assert len(store.certificates) == 2
        assert b"BEGIN CERTIFICATE" in store.certificate_chain_pem()

    def test_pkcs12_trust_only(self, certs):
        store = load_keystore(certs.trust_p12.read_bytes(), "p12", STORE_PASSWORD)

        assert not store.has_identity
        assert store.certificates[0].subject == certs.ca_cert.subject

    def test_pem_from_file_object(self, certs):
        store = load_keystore(io.BytesIO(certs.ca_pem.read_bytes()), "PEM")

        assert len(store.certificates) == 1

    def test_loaded_keystore_and_none_pass_through(self):
        store = KeyStore()

        assert load_keystore(store) is store
        assert load_keystore(None) is None

    def test_wrong_password(self, certs):
        with pytest.raises(TLSConfigurationError):
            load_keystore(certs.client_p12, "pkcs12", "wrong")

    def test_malformed_store(self):
        with pytest.raises(TLSConfigurationError):
            load_keystore(b"definitely not pkcs12")

    def test_unsupported_type(self, certs):
        with pytest.raises(TLSConfigurationError, match="jks"):
            load_keystore(certs.client_p12, "jks")

    def test_missing_file(self, tmp_path):
        with pytest.raises(TLSConfigurationError):
            load_keystore(tmp_path / "missing.p12")

    def test_bad_store_fails_resolution(self):
        with pytest.raises(TLSConfigurationError):
            resolve_tls_context(ManagerConfig(trust_store=b"garbage"))

    def test_keystore_identity_is_installed(self, certs):
        config = ManagerConfig(
            keystore=certs.client_p12,
            keystore_pass=STORE_PASSWORD,
            trust_store=certs.ca_pem,
            trust_store_type="pem",
        )

        assert resolve_tls_context(config).source is TrustSource.STORES


class TestManagers:
    def test_single_manager_or_collection(self, certs):
        trust = TrustManager(cafile=certs.ca_pem)

        assert as_manager_tuple(trust) == (trust,)
        assert as_manager_tuple([trust]) == (trust,)
        assert as_manager_tuple(None) == ()

    def test_rejects_non_managers(self):
        with pytest.raises(TLSConfigurationError):
            as_manager_tuple(["not a manager"])

    def test_trust_manager_needs_a_source(self):
        with pytest.raises(TLSConfigurationError):
            TrustManager()

    def test_broken_key_manager_fails_resolution(self, tmp_path):
        config = ManagerConfig(key_managers=KeyManager(tmp_path / "nope.pem"))

        with pytest.raises(TLSConfigurationError):
            resolve_tls_context(config)

    def test_key_manager_without_identity(self, certs):
        store = load_keystore(certs.trust_p12, "pkcs12", STORE_PASSWORD)

        with pytest.raises(TLSConfigurationError):
            KeyManager.from_keystore(store)

    def test_keystore_key_stays_encrypted_without_a_password(self, certs):
        store = load_keystore(certs.client_p12, "pkcs12", STORE_PASSWORD)
        manager = KeyManager.from_keystore(store)

        assert manager.password
        assert b"BEGIN ENCRYPTED PRIVATE KEY" in manager._pem

        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        manager.install(ctx)


class TestHostnameMatching:
    CERT = {
        "subject": ((("commonName", "fallback.example"),),),
        "subjectAltName": (
            ("DNS", "example.com"),
            ("DNS", "*.example.org"),
            ("IP Address", "10.0.0.1"),
        ),
    }

    @pytest.mark.parametrize(
        "hostname",
        ["example.com", "EXAMPLE.com", "www.example.org", "10.0.0.1"],
    )
    def test_matches(self, hostname):
        assert certificate_matches(self.CERT, hostname)

    @pytest.mark.parametrize(
        "hostname",
        [
            "example.org",
            "a.b.example.org",
            "www.example.org.other.com",
            "fallback.example",
            "10.0.0.2",
            "other.com",
        ],
    )
    def test_mismatches(self, hostname):
        assert not certificate_matches(self.CERT, hostname)

    def test_common_name_fallback_without_dns_sans(self):
        cert = {"subject": ((("commonName", "legacy.example"),),)}

        assert certificate_matches(cert, "legacy.example")
        assert not certificate_matches(cert, "other.example")

    def test_noop_verifier_accepts_everything(self):
        assert NoopHostnameVerifier().verify("whatever", None)
