'''
**connwright.config**

The options accepted by every connection manager builder. Options may be
passed as a `ManagerConfig` or as a mapping using the hyphenated option
names (`keystore-pass`, `insecure?`, `io-config`, ...).

If the value `None` is given or an option is not set, the default is used.
'''
import dataclasses as dc
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Self

from connwright._errors import InvalidArgumentError

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 5
DEFAULT_THREADS = 4


def normalize_option_name(name: str) -> str:
    '''
    `keystore-pass` -> `keystore_pass`, `insecure?` -> `insecure`

    Parameters
    ----------
    name : str

    Returns
    -------
    str
    '''
    return str(name).strip().lstrip(':').rstrip('?').replace('-', '_')


def _freeze_io_config(io_config: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if io_config is None:
        return None
    if dc.is_dataclass(io_config) and not isinstance(io_config, type):
        return MappingProxyType(dc.asdict(io_config))
    if not isinstance(io_config, Mapping):
        raise InvalidArgumentError(
            f'io-config must be a mapping, got {type(io_config).__name__}'
        )
    return MappingProxyType({
        normalize_option_name(key): value
        for key, value in io_config.items()
    })


@dc.dataclass(frozen=True, slots=True)
class ManagerConfig:
    '''
    Options for building connection managers.

    Notes
    -----
    - `timeout` is in seconds, `socket_timeout` and every `io_config`
      duration are in milliseconds.
    - `insecure` and the keystore/trust-store/key-managers/trust-managers
      options are mutually exclusive, managers take precedence over stores
      and stores over `insecure`.
    '''
    dns_resolver: Any = None
    timeout: int = DEFAULT_TIMEOUT
    threads: int = DEFAULT_THREADS
    default_per_route: int | None = None
    insecure: bool = False
    keystore: Any = None
    keystore_type: str | None = None
    keystore_pass: str | None = None
    trust_store: Any = None
    trust_store_type: str | None = None
    trust_store_pass: str | None = None
    key_managers: Any = None
    trust_managers: Any = None
    socket_timeout: int | None = None
    io_config: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, 'io_config', _freeze_io_config(self.io_config))

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> Self:
        '''
        Build a config from a mapping of (possibly hyphenated) option names,
        `None` values fall back to the defaults and unknown keys are ignored.

        Parameters
        ----------
        options : Mapping[str, Any]

        Returns
        -------
        ManagerConfig
        '''
        known = {field.name for field in dc.fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in options.items():
            name = normalize_option_name(key)
            if name not in known:
                logger.debug(f'Ignoring unrecognized connection manager option {key!r}')
                continue
            if value is None:
                continue
            kwargs[name] = value
        return cls(**kwargs)

    def replace(self, **changes: Any) -> Self:
        return dc.replace(self, **changes)

    @property
    def has_stores(self) -> bool:
        return self.keystore is not None or self.trust_store is not None

    @property
    def has_managers(self) -> bool:
        return self.key_managers is not None or self.trust_managers is not None


def coerce_config(config: ManagerConfig | Mapping[str, Any] | None) -> ManagerConfig:
    '''
    Accept a `ManagerConfig`, an option mapping, or `None`.

    Parameters
    ----------
    config : ManagerConfig | Mapping[str, Any] | None

    Returns
    -------
    ManagerConfig

    Raises
    ------
    InvalidArgumentError
    '''
    if config is None:
        return ManagerConfig()

    if isinstance(config, ManagerConfig):
        return config

    if isinstance(config, Mapping):
        return ManagerConfig.from_mapping(config)

    raise InvalidArgumentError(
        f'Expected a ManagerConfig or mapping, got {type(config).__name__}'
    )
