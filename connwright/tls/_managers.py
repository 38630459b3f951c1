import os
import secrets
import ssl
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol, Self, runtime_checkable

from connwright._errors import TLSConfigurationError
from connwright.tls._stores import KeyStore


@runtime_checkable
class ContextInstaller(Protocol):
    def install(self, ctx: ssl.SSLContext) -> None:
        ...


class KeyManager:
    '''
    Client identity material: a certificate chain and its private key.
    '''
    __slots__ = ('certfile', 'keyfile', 'password', '_pem')

    def __init__(
        self,
        certfile: str | os.PathLike | None = None,
        keyfile: str | os.PathLike | None = None,
        password: str | None = None,
    ) -> None:
        self.certfile = certfile
        self.keyfile = keyfile
        self.password = password
        self._pem: bytes | None = None

    @classmethod
    def from_keystore(cls, store: KeyStore, password: str | None = None) -> Self:
        '''
        Build a key manager from the identity entry of a keystore. The
        private key is kept encrypted with `password`, or with a random
        one-time password when none is given.

        Parameters
        ----------
        store : KeyStore
        password : str | None, optional

        Returns
        -------
        KeyManager

        Raises
        ------
        TLSConfigurationError
            If the keystore has no identity entry.
        '''
        if not store.has_identity:
            raise TLSConfigurationError('Keystore has no private key/certificate entry')

        key_password = password or secrets.token_urlsafe(32)
        manager = cls(password=key_password)
        manager._pem = store.private_key_pem(key_password) + store.certificate_chain_pem()
        return manager

    def install(self, ctx: ssl.SSLContext) -> None:
        if self._pem is None:
            ctx.load_cert_chain(self.certfile, self.keyfile, self.password)
            return

        # load_cert_chain only reads from the filesystem
        with tempfile.TemporaryDirectory(prefix='connwright-') as tmp:
            path = Path(tmp) / 'identity.pem'
            path.write_bytes(self._pem)
            ctx.load_cert_chain(path, password=self.password)

    def __repr__(self) -> str:
        source = 'keystore' if self._pem is not None else self.certfile
        return f'KeyManager({source!r})'


class TrustManager:
    '''
    Trust anchors used to verify the peer certificate chain.
    '''
    __slots__ = ('cafile', 'capath', 'cadata')

    def __init__(
        self,
        cafile: str | os.PathLike | None = None,
        capath: str | os.PathLike | None = None,
        cadata: str | bytes | None = None,
    ) -> None:
        if cafile is None and capath is None and cadata is None:
            raise TLSConfigurationError('TrustManager needs a cafile, capath or cadata')
        self.cafile = cafile
        self.capath = capath
        self.cadata = cadata

    @classmethod
    def from_keystore(cls, store: KeyStore) -> Self:
        if not store.certificates:
            raise TLSConfigurationError('Trust store has no certificates')
        return cls(cadata=store.trusted_pem())

    def install(self, ctx: ssl.SSLContext) -> None:
        ctx.load_verify_locations(
            cafile=self.cafile,
            capath=self.capath,
            cadata=self.cadata,
        )

    def __repr__(self) -> str:
        return f'TrustManager(cafile={self.cafile!r}, capath={self.capath!r})'


def as_manager_tuple(managers: Any) -> tuple[ContextInstaller, ...]:
    '''
    Normalize a single manager or any iterable of managers into a tuple.

    Parameters
    ----------
    managers : Any

    Returns
    -------
    tuple[ContextInstaller, ...]

    Raises
    ------
    TLSConfigurationError
        If an element cannot install itself into a context.
    '''
    if managers is None:
        return ()

    if isinstance(managers, ContextInstaller):
        normalized = (managers,)
    elif isinstance(managers, Iterable) and not isinstance(managers, (str, bytes)):
        normalized = tuple(managers)
    else:
        normalized = (managers,)

    for manager in normalized:
        if not isinstance(manager, ContextInstaller):
            raise TLSConfigurationError(
                f'{type(manager).__name__} is not a key or trust manager'
            )
    return normalized


def install_managers(ctx: ssl.SSLContext, managers: Iterable[ContextInstaller]) -> None:
    for manager in managers:
        try:
            manager.install(ctx)
        except (ssl.SSLError, OSError, ValueError, TypeError) as exc:
            raise TLSConfigurationError(f'Cannot install {manager!r}: {exc}') from exc
