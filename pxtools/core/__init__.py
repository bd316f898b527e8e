"""Core pxtools functionality."""

from pxtools.core.config import ConfigError, RecoveryConfig, load_config
from pxtools.core.context import Context
from pxtools.core.logging import Console, ScriptLogger, get_log_path
from pxtools.core.prompt import AutoYesPrompter, InteractivePrompter, Prompter

__all__ = [
    "AutoYesPrompter",
    "ConfigError",
    "Console",
    "Context",
    "InteractivePrompter",
    "Prompter",
    "RecoveryConfig",
    "ScriptLogger",
    "get_log_path",
    "load_config",
]
