from __future__ import annotations
import abc
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class BaseManager(Protocol):
    """Anything the ApplicationCore can start, stop and report on."""

    async def initialize(self) -> None:
        ...

    async def shutdown(self) -> None:
        ...

    def status(self) -> Dict[str, Any]:
        ...


class ShipwrightManager(abc.ABC):
    """Base class for the long-lived services owned by the ApplicationCore.

    Subclasses flip their lifecycle state with ``_set_ready`` and log through
    ``_log`` so they work both before and after a logging manager is attached.
    """

    def __init__(self, name: str) -> None:
        self._name: str = name
        self._initialized: bool = False
        self._healthy: bool = False
        self._started_at: Optional[datetime] = None
        self._logger: Optional[Any] = None

    @abc.abstractmethod
    async def initialize(self) -> None:
        """Bring the manager up.

        Raises:
            ManagerInitializationError: If initialization fails
        """

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Release whatever the manager holds.

        Raises:
            ManagerShutdownError: If shutdown fails
        """

    def _set_ready(self, ready: bool) -> None:
        self._initialized = ready
        self._healthy = ready
        self._started_at = datetime.now() if ready else None

    def _log(self, level: int, message: str) -> None:
        logger = self._logger or logging.getLogger(self._name)
        logger.log(level, message)

    def status(self) -> Dict[str, Any]:
        return {
            'name': self._name,
            'initialized': self._initialized,
            'healthy': self._healthy,
            'started_at': self._started_at.isoformat() if self._started_at else None,
        }

    @property
    def name(self) -> str:
        return self._name

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def healthy(self) -> bool:
        return self._healthy

    def set_logger(self, logger: Any) -> None:
        """Attach a logger.

        Accepts either a ready logger or a logging manager, in which case a
        logger named after this manager is requested from it.
        """
        if hasattr(logger, 'get_logger'):
            logger = logger.get_logger(self._name)
        self._logger = logger
