'''
**connwright.tls**
---------

Resolution of TLS trust/identity material for connection managers: keystores,
key and trust managers, the insecure trust-all strategy and hostname verifiers.
'''
from connwright.tls._context import (
    TLSContext,
    TrustAllStrategy,
    TrustSource,
    TrustStrategy,
    default_ssl_context,
    get_hostname_verifier,
    get_ssl_context,
    resolve_tls_context,
)
from connwright.tls._managers import KeyManager, TrustManager, as_manager_tuple
from connwright.tls._stores import KeyStore, load_keystore
from connwright.tls._verifiers import (
    DefaultHostnameVerifier,
    HostnameVerifier,
    NoopHostnameVerifier,
    certificate_matches,
)

__all__ = [
    'TLSContext',
    'TrustAllStrategy',
    'TrustSource',
    'TrustStrategy',
    'default_ssl_context',
    'get_hostname_verifier',
    'get_ssl_context',
    'resolve_tls_context',
    'KeyManager',
    'TrustManager',
    'as_manager_tuple',
    'KeyStore',
    'load_keystore',
    'DefaultHostnameVerifier',
    'HostnameVerifier',
    'NoopHostnameVerifier',
    'certificate_matches',
]
