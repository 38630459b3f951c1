import dataclasses as dc
import ipaddress
import logging
import socket
from typing import Protocol, runtime_checkable

import dns.exception
import dns.rdatatype as rtype
import dns.resolver

logger = logging.getLogger(__name__)


@runtime_checkable
class DnsResolver(Protocol):
    def resolve(self, host: str) -> list[str]:
        ...


@dc.dataclass(slots=True)
class ResolverConfig:
    '''
    Options for DNS lookups made by `DnspythonResolver`.
    '''
    filename: str = "/etc/resolv.conf"
    configure: bool = True
    lifetime: float = 5.0
    search: bool | None = None
    tcp: bool = False
    ipv6: bool = True


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


class SystemDnsResolver:
    '''
    Resolves through the platform resolver (getaddrinfo).
    '''

    def resolve(self, host: str) -> list[str]:
        if _is_ip_literal(host):
            return [host]

        infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
        addresses: list[str] = []
        for _family, _type, _proto, _canon, sockaddr in infos:
            if sockaddr[0] not in addresses:
                addresses.append(sockaddr[0])
        return addresses


class DnspythonResolver:
    '''
    Resolves A (and optionally AAAA) records with dnspython, bypassing
    the platform resolver.
    '''

    def __init__(self, config: ResolverConfig | None = None) -> None:
        self._config = config or ResolverConfig()
        self._resolver = dns.resolver.Resolver(
            filename=self._config.filename,
            configure=self._config.configure,
        )

    def _query(self, host: str, rdtype: rtype.RdataType) -> list[str]:
        try:
            answer = self._resolver.resolve(
                qname=host,
                rdtype=rdtype,
                lifetime=self._config.lifetime,
                search=self._config.search,
                tcp=self._config.tcp,
            )
        except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
            return []
        return [record.address for record in answer]

    def resolve(self, host: str) -> list[str]:
        '''
        Resolve a hostname to its addresses, IPv4 first.

        Parameters
        ----------
        host : str

        Returns
        -------
        list[str]

        Raises
        ------
        socket.gaierror
            If no address could be found.
        '''
        if _is_ip_literal(host):
            return [host]

        try:
            addresses = self._query(host, rtype.A)
            if self._config.ipv6:
                addresses += self._query(host, rtype.AAAA)
        except dns.exception.DNSException as exc:
            raise socket.gaierror(f'DNS lookup for {host} failed: {exc}') from exc

        if not addresses:
            raise socket.gaierror(f'No addresses found for {host}')

        logger.debug(f'Resolved {host} -> {addresses}')
        return addresses

    @property
    def resolver(self) -> dns.resolver.Resolver:
        return self._resolver


def resolve_dns_resolver(resolver: DnsResolver | None) -> DnsResolver:
    return resolver if resolver is not None else SystemDnsResolver()
