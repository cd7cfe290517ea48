from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class CacheToken:
    """Handle returned by :meth:`ConstRegistry.get_custom`.

    Callers keep the token and pass it back on the next lookup to skip the
    registry search. A token for a key without provider is still resolved, so an
    absent value is not searched for again either.
    """
    key: Optional[str] = None
    provider: Optional[Callable[[], Any]] = None
    resolved: bool = False

    @property
    def found(self) -> bool:
        return self.provider is not None


class ConstRegistry:
    """Registry of named build constants.

    Providers are registered under a string key, either directly or as a
    decorator. A provider is a callable taking no arguments, evaluated on every
    lookup so that values can depend on the current environment.
    """

    def __init__(self) -> None:
        self._providers: Dict[str, Callable[[], Any]] = {}
        self._lock = threading.RLock()

    def register(self, key: str, provider: Any = None) -> Any:
        """Register a provider for ``key``.

        Can be used as ``@constants.register("build_root")`` on a function, or
        called with a provider callable or a plain value.

        Args:
            key: Constant name
            provider: Callable or value; omitted when used as a decorator

        Returns:
            The provider, or a decorator when no provider is given
        """
        if provider is None:
            def decorator(func: Callable[[], Any]) -> Callable[[], Any]:
                self._add(key, func)
                return func

            return decorator

        self._add(key, provider if callable(provider) else (lambda: provider))
        return provider

    def unregister(self, key: str) -> None:
        with self._lock:
            self._providers.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._providers)

    def get_custom(
            self,
            key: Optional[str],
            default: Any = None,
            token: Optional[CacheToken] = None,
    ) -> Tuple[Any, CacheToken]:
        """Look up the value registered under ``key``.

        Args:
            key: Constant name, None yields the default
            default: Value returned when no provider is registered
            token: Token from a previous lookup of the same key

        Returns:
            Tuple of the value and the token to re-supply on the next call
        """
        if key is None:
            return default, CacheToken(resolved=True)

        if token is None or not token.resolved or token.key != key:
            with self._lock:
                token = CacheToken(key=key, provider=self._providers.get(key), resolved=True)

        if token.provider is None:
            return default, token
        return token.provider(), token

    def get(self, key: str, default: Any = None) -> Any:
        """Look up ``key`` without keeping a token."""
        return self.get_custom(key, default)[0]

    def _add(self, key: str, provider: Callable[[], Any]) -> None:
        if not key:
            raise ValueError("Constant key must not be empty")
        with self._lock:
            self._providers[key] = provider


constants = ConstRegistry()
