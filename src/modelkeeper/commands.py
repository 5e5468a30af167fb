"""
Model Commands

The command surface exposed to hosts (CLI, desktop shell, scripts). Every
command returns a ``CommandResult`` instead of raising, so callers always
get the target, the failed stage and the partial-artifact status.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from .config.settings import ModelKeeperSettings
from .core.error_handling import ModelKeeperError
from .models.model_updater import UpdateOrchestrator
from .models.types import UpdateOutcome


@dataclass
class CommandResult:
    """Structured outcome of one command."""
    success: bool
    command: str
    model_id: Optional[str] = None
    version: Optional[str] = None
    stage: Optional[str] = None
    message: str = ""
    error: Optional[Dict[str, Any]] = None
    partial_artifact_left: bool = False
    data: Any = None

    @classmethod
    def from_error(cls, command: str, error: ModelKeeperError) -> "CommandResult":
        return cls(
            success=False,
            command=command,
            model_id=error.model_id,
            version=error.version,
            stage=error.stage,
            message=str(error),
            error=error.to_dict(),
            partial_artifact_left=error.partial_artifact_left,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "command": self.command,
            "model_id": self.model_id,
            "version": self.version,
            "stage": self.stage,
            "message": self.message,
            "error": self.error,
            "partial_artifact_left": self.partial_artifact_left,
            "data": self.data,
        }


class ModelCommands:
    """
    Host-facing model commands.

    Args:
        settings: Settings used to build the orchestrator when none is given
        orchestrator: Preconfigured orchestrator (tests inject fakes here)
    """

    def __init__(self, settings: Optional[ModelKeeperSettings] = None,
                 orchestrator: Optional[UpdateOrchestrator] = None):
        self.orchestrator = orchestrator or UpdateOrchestrator(settings)

    async def _guard(self, command: str, model_id: Optional[str],
                     action: Callable[[], Awaitable[CommandResult]]) -> CommandResult:
        try:
            return await action()
        except ModelKeeperError as e:
            e.attach(model_id=model_id)
            logger.error(f"{command} failed: {e}")
            return CommandResult.from_error(command, e)

    async def check(self) -> CommandResult:
        async def run():
            candidates = await self.orchestrator.check_for_updates()
            return CommandResult(
                success=True,
                command="check",
                message=f"{len(candidates)} update(s) available",
                data=[c.to_dict() for c in candidates],
            )
        return await self._guard("check", None, run)

    async def install(self, model_id: str, version: Optional[str] = None,
                      variant: Optional[str] = None, force: bool = False) -> CommandResult:
        async def run():
            result = await self.orchestrator.install(model_id, variant=variant, version=version, force=force)
            message = (
                f"Installed {model_id} {result.version}" if result.changed
                else f"{model_id} {result.version} is already installed"
            )
            return CommandResult(True, "install", model_id, result.version, "done", message, data=result.to_dict())
        return await self._guard("install", model_id, run)

    @staticmethod
    def _batch_result(command: str, model_id: Optional[str], outcomes: List[UpdateOutcome],
                      verb: str, empty_message: str) -> CommandResult:
        failed = [o for o in outcomes if not o.ok]
        changed = [o for o in outcomes if o.ok and o.result.changed]
        if not outcomes:
            message = empty_message
        else:
            message = f"{len(changed)} {verb}, {len(failed)} failed"
        first_error = failed[0].error if failed else None
        return CommandResult(
            success=not failed,
            command=command,
            model_id=model_id,
            stage=getattr(first_error, "stage", None),
            message=message,
            error=first_error.to_dict() if first_error is not None else None,
            data=[o.to_dict() for o in outcomes],
        )

    async def update(self, model_id: Optional[str] = None, force: bool = False) -> CommandResult:
        async def run():
            outcomes = await self.orchestrator.update(model_id, force=force)
            return self._batch_result("update", model_id, outcomes, "updated", "All models are up to date")
        return await self._guard("update", model_id, run)

    async def install_all(self, model_ids: Optional[List[str]] = None, force: bool = False) -> CommandResult:
        async def run():
            outcomes = await self.orchestrator.install_all(model_ids, force=force)
            return self._batch_result("install_all", None, outcomes, "installed", "No models to install")
        return await self._guard("install_all", None, run)

    async def rollback(self, model_id: str, version: Optional[str] = None,
                       variant: Optional[str] = None, cleanup_backup: bool = False) -> CommandResult:
        async def run():
            result = await self.orchestrator.rollback(
                model_id, target_version=version, variant=variant, cleanup_backup=cleanup_backup
            )
            message = f"Rolled back {model_id} to {result.version} from {result.source}"
            return CommandResult(True, "rollback", model_id, result.version, "done", message, data=result.to_dict())
        return await self._guard("rollback", model_id, run)

    async def list(self) -> CommandResult:
        async def run():
            installed = self.orchestrator.list_installed()
            return CommandResult(
                success=True,
                command="list",
                message=f"{len(installed)} installed",
                data=[m.model_dump(mode="json") for m in installed],
            )
        return await self._guard("list", None, run)

    async def cleanup(self, keep_count: Optional[int] = None, protect_predecessors: bool = True) -> CommandResult:
        async def run():
            deleted = self.orchestrator.cleanup(keep_count, protect_predecessors=protect_predecessors)
            return CommandResult(
                success=True,
                command="cleanup",
                message=f"Removed {len(deleted)} backup(s)",
                data=[b.to_dict() for b in deleted],
            )
        return await self._guard("cleanup", None, run)

    async def history(self, model_id: str) -> CommandResult:
        async def run():
            versions = self.orchestrator.version_history(model_id)
            return CommandResult(
                success=True,
                command="history",
                model_id=model_id,
                message=f"{len(versions)} version(s)",
                data=[v.model_dump(mode="json") for v in versions],
            )
        return await self._guard("history", model_id, run)

    async def verify(self, model_id: Optional[str] = None) -> CommandResult:
        async def run():
            reports = await self.orchestrator.verify_installed(model_id)
            failed = [key for key, report in reports.items() if not report.ok]
            return CommandResult(
                success=not failed,
                command="verify",
                model_id=model_id,
                stage="verifying" if failed else None,
                message=f"{len(reports) - len(failed)} of {len(reports)} artifact(s) verified",
                data={key: report.to_dict() for key, report in reports.items()},
            )
        return await self._guard("verify", model_id, run)

    async def remove(self, model_id: str, variant: Optional[str] = None) -> CommandResult:
        async def run():
            removed = await self.orchestrator.remove(model_id, variant)
            return CommandResult(
                success=True,
                command="remove",
                model_id=model_id,
                message=f"Removed {len(removed)} installed variant(s)",
                data=[m.model_dump(mode="json") for m in removed],
            )
        return await self._guard("remove", model_id, run)

    async def available(self) -> CommandResult:
        async def run():
            models = self.orchestrator.available_models()
            return CommandResult(
                success=True,
                command="available",
                message=f"{len(models)} model(s) available to install",
                data=[m.model_dump(mode="json") for m in models],
            )
        return await self._guard("available", None, run)

    async def auto_update(self, enabled: bool) -> CommandResult:
        async def run():
            state = self.orchestrator.set_auto_update(enabled)
            return CommandResult(
                success=True,
                command="auto_update",
                message=f"Automatic updates {'enabled' if enabled else 'disabled'}",
                data={"auto_update_enabled": state.auto_update_enabled},
            )
        return await self._guard("auto_update", None, run)

    async def refresh(self, source: Path) -> CommandResult:
        async def run():
            document = self.orchestrator.refresh_registry(source)
            return CommandResult(
                success=True,
                command="refresh",
                message=f"Registry now lists {len(document.models)} model(s)",
                data={"registry_version": document.registry_version, "models": sorted(document.models)},
            )
        return await self._guard("refresh", None, run)
