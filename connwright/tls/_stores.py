import dataclasses as dc
import logging
import os
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from connwright._errors import TLSConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_STORE_TYPE = 'pkcs12'

_STORE_TYPE_ALIASES = {
    'pkcs12': 'pkcs12',
    'p12': 'pkcs12',
    'pfx': 'pkcs12',
    'pem': 'pem',
}


@dc.dataclass(frozen=True, slots=True)
class KeyStore:
    '''
    Identity and/or trust material loaded from a keystore.

    `private_key` and `certificate` form the identity entry (if any),
    `additional_certificates` holds the rest of the chain or, for a
    trust store, the trusted certificates.
    '''
    private_key: Any = None
    certificate: x509.Certificate | None = None
    additional_certificates: tuple[x509.Certificate, ...] = ()

    @property
    def certificates(self) -> tuple[x509.Certificate, ...]:
        if self.certificate is None:
            return self.additional_certificates
        return (self.certificate, *self.additional_certificates)

    @property
    def has_identity(self) -> bool:
        return self.private_key is not None and self.certificate is not None

    def certificate_chain_pem(self) -> bytes:
        return b''.join(
            cert.public_bytes(serialization.Encoding.PEM)
            for cert in self.certificates
        )

    def private_key_pem(self, password: str | None = None) -> bytes:
        '''
        The private key as PKCS#8 PEM, encrypted when a password is given.

        Parameters
        ----------
        password : str | None, optional

        Returns
        -------
        bytes
        '''
        if self.private_key is None:
            raise TLSConfigurationError('Keystore has no private key entry')

        if password:
            encryption = serialization.BestAvailableEncryption(password.encode())
        else:
            encryption = serialization.NoEncryption()

        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )

    def trusted_pem(self) -> str:
        return self.certificate_chain_pem().decode('ascii')


def _read_source(source: Any) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)

    if hasattr(source, 'read'):
        data = source.read()
        return data.encode() if isinstance(data, str) else bytes(data)

    with open(os.fspath(source), 'rb') as fp:
        return fp.read()


def _load_pkcs12(data: bytes, password: str | None) -> KeyStore:
    key, cert, additional = pkcs12.load_key_and_certificates(
        data,
        password.encode() if password else None,
    )
    return KeyStore(
        private_key=key,
        certificate=cert,
        additional_certificates=tuple(additional or ()),
    )


def _load_pem(data: bytes, password: str | None) -> KeyStore:
    certs = x509.load_pem_x509_certificates(data) if b'CERTIFICATE' in data else []
    key = None
    if b'PRIVATE KEY' in data:
        key = serialization.load_pem_private_key(
            data,
            password=password.encode() if password else None,
        )

    if key is None:
        return KeyStore(additional_certificates=tuple(certs))

    return KeyStore(
        private_key=key,
        certificate=certs[0] if certs else None,
        additional_certificates=tuple(certs[1:]),
    )


def load_keystore(
    keystore: Any,
    keystore_type: str | None = None,
    keystore_pass: str | None = None,
) -> KeyStore | None:
    '''
    Load a keystore from a path, bytes or a readable file object. An
    already loaded `KeyStore` is returned as-is and `None` gives `None`.

    Parameters
    ----------
    keystore : Any
        A `KeyStore`, a filesystem path, raw bytes or a file object.
    keystore_type : str | None, optional
        `pkcs12` (the default, aliases `p12`/`pfx`) or `pem`
    keystore_pass : str | None, optional
        The store password (for PEM, the private key password).

    Returns
    -------
    KeyStore | None

    Raises
    ------
    TLSConfigurationError
        If the store type is unsupported, the source is unreadable, the data
        is malformed or the password is wrong.
    '''
    if keystore is None:
        return None

    if isinstance(keystore, KeyStore):
        return keystore

    store_type = (keystore_type or DEFAULT_STORE_TYPE).lower()
    kind = _STORE_TYPE_ALIASES.get(store_type)
    if kind is None:
        raise TLSConfigurationError(f'Unsupported keystore type: {keystore_type}')

    try:
        data = _read_source(keystore)
    except (OSError, TypeError) as exc:
        raise TLSConfigurationError(f'Cannot read keystore {keystore!r}: {exc}') from exc

    try:
        if kind == 'pkcs12':
            store = _load_pkcs12(data, keystore_pass)
        else:
            store = _load_pem(data, keystore_pass)
    except (ValueError, TypeError) as exc:
        raise TLSConfigurationError(f'Cannot load {store_type} keystore: {exc}') from exc

    logger.debug(
        f'Loaded {store_type} keystore with {len(store.certificates)} certificate(s)'
    )
    return store
