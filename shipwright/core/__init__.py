"""Core package containing the managers and the build-independent components."""

from shipwright.core.base import BaseManager, ShipwrightManager
from shipwright.core.command import CommandProgress, CommandResult, CommandRunner
from shipwright.core.config_manager import ConfigManager
from shipwright.core.const_registry import CacheToken, ConstRegistry, constants
from shipwright.core.environment import Environment, LogLevel, PlatformType
from shipwright.core.logging_manager import LoggingManager
from shipwright.core.task_pipeline import ErrorKind, TaskHandler, TaskPhase, TaskPipeline, TaskReport, TaskResult
from shipwright.core.variables import VariableResolver
