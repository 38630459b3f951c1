'''
**connwright.registry**

Scheme -> socket factory registries. A registry is built once per
connection manager and shared read-only by every connection it opens.
'''
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any, Self

from connwright._errors import InvalidArgumentError


class Registry(Mapping[str, Any]):
    '''
    An immutable mapping of URL scheme to connection factory, lookups
    return the registered object itself.
    '''
    __slots__ = ('_items',)

    def __init__(self, items: Mapping[str, Any] | None = None) -> None:
        self._items = MappingProxyType({
            str(scheme).lower(): factory
            for scheme, factory in (items or {}).items()
        })

    def __getitem__(self, scheme: str) -> Any:
        if not isinstance(scheme, str):
            raise KeyError(scheme)
        return self._items[scheme.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f'Registry({dict(self._items)!r})'

    def lookup(self, scheme: str) -> Any:
        '''
        Get the factory registered for a scheme.

        Parameters
        ----------
        scheme : str

        Returns
        -------
        Any

        Raises
        ------
        KeyError
            If nothing is registered for the scheme.
        '''
        try:
            return self[scheme]
        except KeyError:
            raise KeyError(f'No factory registered for scheme {scheme!r}') from None


class RegistryBuilder:
    def __init__(self) -> None:
        self._items: dict[str, Any] = {}

    @classmethod
    def create(cls) -> Self:
        return cls()

    def register(self, scheme: str, factory: Any) -> Self:
        self._items[scheme] = factory
        return self

    def build(self) -> Registry:
        return Registry(self._items)


def into_registry(registry: Registry | Mapping[str, Any]) -> Registry:
    '''
    Coerce a scheme -> factory mapping into a `Registry`, an existing
    registry is returned as-is.

    Parameters
    ----------
    registry : Registry | Mapping[str, Any]

    Returns
    -------
    Registry

    Raises
    ------
    InvalidArgumentError
        If the input is neither a Registry nor a mapping.
    '''
    if isinstance(registry, Registry):
        return registry

    if isinstance(registry, Mapping):
        builder = RegistryBuilder.create()
        for scheme, factory in registry.items():
            builder.register(scheme, factory)
        return builder.build()

    raise InvalidArgumentError(
        f'Cannot coerce {type(registry).__name__} into a Registry'
    )
