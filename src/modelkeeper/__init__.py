"""
Model Keeper - Model Asset Lifecycle Manager

Discovers, downloads, verifies, installs, updates, rolls back and prunes
large ML model artifacts on the local machine, independent of the inference
engine that later loads them.

Basic Usage:
    from modelkeeper import ModelCommands

    commands = ModelCommands()
    result = await commands.install("phi-3-mini")

Advanced Usage:
    from modelkeeper.config import load_settings
    from modelkeeper.models import UpdateOrchestrator

    orchestrator = UpdateOrchestrator(load_settings(models_dir="~/models"))
    candidates = await orchestrator.check_for_updates()
"""

__version__ = "0.1.0"
__author__ = "David Irvine"
__description__ = "Model asset lifecycle manager: install, verify, update and roll back local ML models"

from .commands import CommandResult, ModelCommands
from .config import ModelKeeperSettings, load_settings
from .core import ModelKeeperError
from .models import UpdateOrchestrator

__all__ = [
    "CommandResult",
    "ModelCommands",
    "ModelKeeperSettings",
    "load_settings",
    "ModelKeeperError",
    "UpdateOrchestrator",
]
