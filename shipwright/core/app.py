from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Optional

from shipwright.build.backend import PyInstallerBackend
from shipwright.build.builder import BinaryBuilder
from shipwright.build.config import BuildConfig
from shipwright.build.prefs import PreprocessOutcome, PrefsPreprocessor
from shipwright.core.base import BaseManager
from shipwright.core.command import CommandRunner
from shipwright.core.config_manager import ConfigManager
from shipwright.core.environment import Environment
from shipwright.core.logging_manager import LoggingManager
from shipwright.core.task_pipeline import TaskPipeline, TaskReport
from shipwright.core.title import TitleMonitor
from shipwright.utils.exceptions import ApplicationError


class ApplicationCore:
    """Wires configuration, logging and the build components together.

    Managers are initialized in dependency order and shut down in reverse.
    """

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the application core.

        Args:
            config_path: Optional path to configuration file
            overrides: Dotted configuration keys applied after loading
        """
        self._config_path = config_path
        self._overrides = dict(overrides or {})
        self._managers: Dict[str, BaseManager] = {}
        self._shutdown_order: List[str] = []
        self._initialized = False
        self._logger: Any = None
        self._environment: Optional[Environment] = None
        self._runner: Optional[CommandRunner] = None
        self._pipeline: Optional[TaskPipeline] = None

    async def initialize(self) -> None:
        """Initialize the application core asynchronously.

        Raises:
            ApplicationError: If initialization fails
        """
        try:
            config_manager = ConfigManager(config_path=self._config_path)
            await config_manager.initialize()
            self._register('config_manager', config_manager)
            for key, value in self._overrides.items():
                await config_manager.set(key, value)

            logging_manager = LoggingManager(config_manager)
            await logging_manager.initialize()
            self._register('logging_manager', logging_manager)
            config_manager.set_logger(logging_manager)
            self._logger = logging_manager.get_logger('app_core')

            self._environment = Environment.from_config(config_manager.get('environment', {}))
            self._runner = CommandRunner(
                logger=logging_manager.get_logger('command'),
                encoding=config_manager.get('command.encoding', 'utf-8'),
                terminate_timeout=float(config_manager.get('command.terminate_timeout', 5.0)),
            )
            self._pipeline = TaskPipeline(logger=logging_manager.get_logger('task_pipeline'))

            self._initialized = True
            self._logger.debug(f'Shipwright initialized for {self._environment.label()}')

        except Exception as e:
            if self._logger:
                self._logger.error(f'Failed to initialize Shipwright: {str(e)}')
            else:
                logging.getLogger('app_core').debug(traceback.format_exc())
            raise ApplicationError(f'Failed to initialize application: {str(e)}') from e

    def _register(self, name: str, manager: BaseManager) -> None:
        self._managers[name] = manager
        self._shutdown_order.insert(0, name)

    def get_manager(self, name: str) -> Optional[BaseManager]:
        """Get a manager by name.

        Args:
            name: Name of the manager

        Returns:
            The manager or None if not found
        """
        return self._managers.get(name)

    @property
    def config(self) -> ConfigManager:
        return self._require('config_manager')

    @property
    def logging(self) -> LoggingManager:
        return self._require('logging_manager')

    @property
    def environment(self) -> Environment:
        self._check_initialized()
        return self._environment

    @property
    def runner(self) -> CommandRunner:
        self._check_initialized()
        return self._runner

    @property
    def pipeline(self) -> TaskPipeline:
        self._check_initialized()
        return self._pipeline

    def create_preprocessor(self) -> PrefsPreprocessor:
        """Create the preferences preprocessor from the ``prefs`` section."""
        return PrefsPreprocessor.from_config(
            self.config.get('prefs', {}),
            self.environment,
            logger=self.logging.get_logger('prefs'),
        )

    def create_builder(self, preprocess: bool = True) -> BinaryBuilder:
        """Create a binary builder from the ``build`` section.

        Args:
            preprocess: Run the preferences preprocessor in the prepare stage
        """
        build_section = self.config.get('build', {})
        backend = PyInstallerBackend.from_config(
            build_section.get('backend', {}),
            self.runner,
            self.environment.project_path,
            logger=self.logging.get_logger('pyinstaller'),
        )
        return BinaryBuilder(
            self.environment,
            backend,
            config=BuildConfig.from_config(build_section),
            preprocessor=self.create_preprocessor() if preprocess else None,
            runner=self.runner,
            logger=self.logging.get_logger('binary'),
        )

    async def build(self, builder: Optional[BinaryBuilder] = None) -> TaskReport:
        """Run a binary build through the task pipeline."""
        return await self.pipeline.execute_async(builder or self.create_builder())

    async def preprocess(self) -> PreprocessOutcome:
        """Run only the preferences preprocessor."""
        return await self.create_preprocessor().run()

    def title_monitor(self) -> TitleMonitor:
        prefs_source = self.create_preprocessor().source
        return TitleMonitor(
            self.runner,
            self.environment,
            prefs_file=prefs_source,
            logger=self.logging.get_logger('title'),
        )

    async def shutdown(self) -> None:
        """Shutdown the application core.

        Raises:
            ApplicationError: If shutdown fails
        """
        if not self._initialized:
            return

        try:
            for name in self._shutdown_order:
                await self._managers[name].shutdown()
            self._managers.clear()
            self._shutdown_order.clear()
            self._initialized = False
        except Exception as e:
            raise ApplicationError(f'Failed to shutdown application: {str(e)}') from e

    def is_initialized(self) -> bool:
        return self._initialized

    def status(self) -> Dict[str, Any]:
        """Get the application status.

        Returns:
            Status dictionary
        """
        from shipwright.__version__ import __version__

        status: Dict[str, Any] = {
            'name': 'ApplicationCore',
            'initialized': self._initialized,
            'version': __version__,
            'environment': self._environment.label() if self._environment else None,
            'managers': {},
        }
        for name, manager in self._managers.items():
            status['managers'][name] = manager.status()
        return status

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise ApplicationError('Application core not initialized')

    def _require(self, name: str) -> Any:
        manager = self._managers.get(name)
        if manager is None:
            raise ApplicationError(f'Manager {name} not available')
        return manager
