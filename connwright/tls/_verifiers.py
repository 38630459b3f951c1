import logging
import ssl
from typing import Protocol, runtime_checkable

from urllib3.util.ssl_match_hostname import CertificateError, match_hostname

logger = logging.getLogger(__name__)


@runtime_checkable
class HostnameVerifier(Protocol):
    def verify(self, hostname: str, ssl_object: ssl.SSLObject | ssl.SSLSocket) -> bool:
        ...


class NoopHostnameVerifier:
    '''
    Accepts every peer regardless of hostname, only used for `insecure`.
    '''

    def verify(self, hostname: str, ssl_object) -> bool:
        return True

    def __repr__(self) -> str:
        return 'NoopHostnameVerifier()'


def certificate_matches(cert: dict, hostname: str) -> bool:
    '''
    Check a decoded peer certificate (as returned by `getpeercert()`)
    against a hostname or IP literal.

    Parameters
    ----------
    cert : dict
    hostname : str

    Returns
    -------
    bool
    '''
    try:
        match_hostname(cert, hostname.strip('[]'), hostname_checks_common_name=True)
    except (CertificateError, ValueError) as exc:
        logger.debug(f'Certificate does not match {hostname}: {exc}')
        return False
    return True


class DefaultHostnameVerifier:
    '''
    Strict verifier: the peer certificate must name the requested host.
    '''

    def verify(self, hostname: str, ssl_object) -> bool:
        cert = ssl_object.getpeercert()
        if not cert:
            logger.debug(f'No verified peer certificate available for {hostname}')
            return False
        return certificate_matches(cert, hostname)

    def __repr__(self) -> str:
        return 'DefaultHostnameVerifier()'
