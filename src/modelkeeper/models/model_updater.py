"""
Model Update Orchestrator

Drives install, update and rollback of model artifacts:

- Compatibility and resource gating before any I/O
- Backup of the installed artifact before it is replaced
- Download and verification into a hidden temp file
- Atomic rename into place followed by a local state commit
- Rollback from backup, falling back to re-download
"""

import asyncio
import os
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from ..config.settings import ModelKeeperSettings, load_settings
from ..core.error_handling import (
    BackupUnavailableError,
    CompatibilityError,
    ErrorCategory,
    InsufficientResourcesError,
    ModelKeeperError,
    NotFoundError,
    StateCommitError,
)
from ..utils.file_lock import ModelLock
from ..utils.file_utils import remove_file
from ..utils.system import total_ram_gb
from .backup import Backup, BackupManager
from .downloader import Downloader, HttpTransport, Sleep
from .integrity import IntegrityVerifier, VerificationReport
from .local_state import LocalStateStore
from .progress import DownloadProgressTracker, ProgressCallback, notify_callbacks
from .registry import ModelRegistry
from .types import (
    ArtifactFormat,
    InstalledModel,
    LocalState,
    ModelInfo,
    ModelVersion,
    OperationResult,
    OperationStage,
    RegistryDocument,
    UpdateCandidate,
    UpdateOutcome,
    UpdateProgress,
    state_key,
)
from .versioning import VersionComparator


class UpdateOrchestrator:
    """
    Install, update and roll back models under ``settings.models_dir``.

    Operations on different models run concurrently. Operations on the same
    (model_id, variant) are serialized by a keyed lock held from the first
    state read through the final commit.
    """

    def __init__(
        self,
        settings: Optional[ModelKeeperSettings] = None,
        transport: Optional[HttpTransport] = None,
        sleep: Sleep = asyncio.sleep,
        ram_probe: Callable[[], float] = total_ram_gb,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Runtime settings; loaded from the environment if omitted
            transport: HTTP transport for downloads; aiohttp if omitted
            sleep: Awaitable used for retry delays
            ram_probe: Returns total system RAM in GB
        """
        self.settings = settings or load_settings()
        self.settings.ensure_directories()
        self.models_dir = self.settings.models_dir
        self.comparator = VersionComparator(self.settings.app_version)

        lock_timeout = self.settings.lock_timeout_seconds
        self.registry = ModelRegistry(self.settings.registry_path, lock_timeout=lock_timeout)
        self.local_state = LocalStateStore(self.settings.local_state_path, lock_timeout=lock_timeout)
        self.verifier = IntegrityVerifier(
            size_tolerance_bytes=self.settings.size_tolerance_bytes,
            min_artifact_bytes=self.settings.min_artifact_bytes,
        )
        self.downloader = Downloader(
            self.verifier,
            transport=transport,
            retry_policy=self.settings.retry_policy(),
            attempt_timeout=self.settings.attempt_timeout_seconds,
            chunk_size=self.settings.chunk_size,
            sleep=sleep,
        )
        self.backups = BackupManager(self.settings.backup_dir)
        self.locks = ModelLock(self.settings.lock_dir, timeout=lock_timeout)
        self.ram_probe = ram_probe

        self.progress_callbacks: List[ProgressCallback] = []
        self.update_progress: Dict[str, UpdateProgress] = {}

        logger.info(
            f"Model orchestrator ready: models dir {self.models_dir}, app version {self.settings.app_version}"
        )

    # Paths

    def artifact_path(self, model_id: str, variant: str, extension: str) -> Path:
        return self.models_dir / f"{model_id}-{variant}.{extension}"

    def temp_path(self, model_id: str, variant: str, extension: str) -> Path:
        return self.models_dir / f".{model_id}-{variant}.{extension}.part"

    # Progress

    def add_progress_callback(self, callback: ProgressCallback) -> None:
        """
        Add a callback for progress notifications.

        Args:
            callback: Sync or async function taking an ``UpdateProgress``
        """
        self.progress_callbacks.append(callback)

    def remove_progress_callback(self, callback: ProgressCallback) -> None:
        if callback in self.progress_callbacks:
            self.progress_callbacks.remove(callback)

    def get_update_status(self, model_id: str, variant: str) -> Optional[UpdateProgress]:
        """Latest progress snapshot for an operation on (model_id, variant)."""
        return self.update_progress.get(state_key(model_id, variant))

    def _remember(self, progress: UpdateProgress) -> None:
        self.update_progress[state_key(progress.model_id, progress.variant)] = progress

    async def _emit(self, progress: UpdateProgress, stage: OperationStage,
                    error_message: Optional[str] = None) -> UpdateProgress:
        progress = replace(progress, stage=stage, error_message=error_message)
        if stage == OperationStage.DONE:
            progress = replace(progress, progress_percent=100.0)
        self._remember(progress)
        await notify_callbacks(self.progress_callbacks, progress)
        return progress

    async def _fail(self, progress: UpdateProgress, error: ModelKeeperError,
                    stage: OperationStage, final: OperationStage = OperationStage.FAILED) -> ModelKeeperError:
        error.attach(model_id=progress.model_id, version=progress.version, stage=stage.value)
        logger.error(f"{stage.value} failed for {progress.model_id}-{progress.variant}: {error}")
        progress = await self._emit(progress, OperationStage.FAILING, error.message)
        await self._emit(progress, final, error.message)
        return error

    # Gating

    def check_compatibility(self, target: ModelVersion) -> List[str]:
        """
        Refuse versions the host application or machine cannot run.

        Returns:
            Warnings for soft resource shortfalls

        Raises:
            CompatibilityError: if no compatibility constraint is satisfied
            InsufficientResourcesError: if RAM is below the declared minimum
        """
        if not self.comparator.satisfies(target.compatibility):
            raise CompatibilityError(
                f"{target.model_id} {target.version} requires app version "
                f"{', '.join(target.compatibility) or '(none declared)'}; "
                f"this app is {self.settings.app_version}",
                model_id=target.model_id,
                version=target.version,
                stage=OperationStage.CHECKING.value,
            )

        warnings = []
        if target.minimum_ram_gb or target.recommended_ram_gb:
            ram = self.ram_probe()
            if ram < target.minimum_ram_gb:
                message = (
                    f"{target.model_id} {target.version} needs {target.minimum_ram_gb:.1f}GB RAM, "
                    f"{ram:.1f}GB available"
                )
                if self.settings.enforce_ram_requirements:
                    raise InsufficientResourcesError(
                        message,
                        model_id=target.model_id,
                        version=target.version,
                        stage=OperationStage.CHECKING.value,
                    )
                logger.warning(f"{message}; continuing because RAM enforcement is disabled")
                warnings.append(message)
            elif ram < target.recommended_ram_gb:
                message = f"{target.recommended_ram_gb:.1f}GB RAM recommended, {ram:.1f}GB available"
                logger.warning(f"{target.model_id} {target.version}: {message}")
                warnings.append(message)
        return warnings

    def _deadline(self) -> Optional[float]:
        if self.settings.operation_timeout_seconds is None:
            return None
        return asyncio.get_running_loop().time() + self.settings.operation_timeout_seconds

    # Install pipeline

    async def install(self, model_id: str, variant: Optional[str] = None,
                      version: Optional[str] = None, force: bool = False) -> OperationResult:
        """
        Install a model version, the registry's current version by default.

        Args:
            model_id: Registry model id
            variant: Install slot; defaults to the version's declared variant
            version: Pin a specific version
            force: Reinstall even if the target version is already installed

        Returns:
            OperationResult; ``changed`` is False for an idempotent no-op

        Raises:
            NotFoundError, CompatibilityError, NetworkError, IntegrityError,
            StateCommitError, LockTimeoutError
        """
        return await self._run(model_id, variant, version, force=force, action="install")

    async def _run(self, model_id: str, variant: Optional[str], version: Optional[str],
                   force: bool, action: str, prefer_backup: bool = False) -> OperationResult:
        target = self.registry.get_version(model_id, version)
        variant = variant or target.variant
        warnings = self.check_compatibility(target)

        async with self.locks.hold(model_id, variant):
            result = await self._install_locked(target, variant, force, action, prefer_backup)
        result.warnings = warnings + result.warnings
        return result

    async def _install_locked(self, target: ModelVersion, variant: str, force: bool,
                              action: str, prefer_backup: bool) -> OperationResult:
        model_id = target.model_id
        progress = await self._emit(
            UpdateProgress(model_id=model_id, variant=variant, version=target.version,
                           total_bytes=target.size_bytes),
            OperationStage.CHECKING,
        )

        existing = self.local_state.get(model_id, variant)
        final_path = self.artifact_path(model_id, variant, target.extension)

        if (existing is not None and not force and existing.version == target.version
                and existing.path.is_file()):
            logger.info(f"{model_id}-{variant} is already at {target.version}, nothing to do")
            await self._emit(progress, OperationStage.DONE)
            return OperationResult(
                model_id=model_id,
                variant=variant,
                version=target.version,
                action=action,
                changed=False,
                previous_version=existing.version,
                source="installed",
                file_path=str(existing.path),
            )

        warnings: List[str] = []
        backup_created = False
        if existing is not None and existing.path.is_file():
            progress = await self._emit(progress, OperationStage.BACKING_UP)
            if await self.backups.backup(model_id, existing.version, existing.path):
                backup_created = True
            else:
                warnings.append(
                    f"Backup of {existing.version} failed; rolling back to it may re-download"
                )

        temp_path = self.temp_path(model_id, variant, target.extension)
        remove_file(temp_path)
        stage = OperationStage.DOWNLOADING
        try:
            report, source = await self._fetch_artifact(target, variant, temp_path, progress, prefer_backup)
            stage = OperationStage.COMMITTING
            progress = await self._emit(progress, stage)
            os.replace(temp_path, final_path)
        except ModelKeeperError as e:
            remove_file(temp_path)
            raise await self._fail(progress, e, stage)
        except OSError as e:
            remove_file(temp_path)
            error = ModelKeeperError(f"Could not place artifact: {e}", category=ErrorCategory.STATE)
            raise await self._fail(progress, error, stage) from e
        except BaseException:
            remove_file(temp_path)
            raise

        if report.low_trust:
            warnings.append(f"{model_id} {target.version} has no declared checksum; installed as low trust")

        installed = InstalledModel(
            model_id=model_id,
            version=target.version,
            variant=variant,
            file_path=str(final_path),
            checksum=target.checksum,
            size_bytes=report.actual_size,
        )
        try:
            await asyncio.to_thread(self.local_state.commit, installed)
        except (ModelKeeperError, OSError) as e:
            raise await self._commit_failed(progress, target, existing, final_path, backup_created, e)

        if existing is not None and existing.path != final_path:
            remove_file(existing.path)

        await self._emit(progress, OperationStage.DONE)
        logger.info(f"{action.capitalize()} of {model_id}-{variant} {target.version} complete ({source})")
        return OperationResult(
            model_id=model_id,
            variant=variant,
            version=target.version,
            action=action,
            previous_version=existing.version if existing else None,
            source=source,
            backup_created=backup_created,
            low_trust=report.low_trust,
            file_path=str(final_path),
            warnings=warnings,
        )

    async def _fetch_artifact(self, target: ModelVersion, variant: str, temp_path: Path,
                              progress: UpdateProgress, prefer_backup: bool) -> Tuple[VerificationReport, str]:
        """Fill ``temp_path`` with a verified artifact, from backup when allowed, else by download."""
        if prefer_backup and await self.backups.restore(
            target.model_id, target.version, temp_path, target.extension
        ):
            progress = await self._emit(progress, OperationStage.VERIFYING)
            report = await asyncio.to_thread(
                self.verifier.verify,
                temp_path,
                expected_size=target.size_bytes,
                expected_checksum=target.checksum,
                exact_size=True,
                artifact_format=target.format,
            )
            if report.ok:
                return report, "backup"
            logger.warning(
                f"Backup of {target.model_id} {target.version} failed verification "
                f"({', '.join(report.failures)}); downloading instead"
            )
            remove_file(temp_path)

        if not target.download_url:
            if prefer_backup:
                raise BackupUnavailableError(
                    f"No usable backup of {target.model_id} {target.version} and no download URL to fetch it"
                )
            raise NotFoundError(f"{target.model_id} {target.version} has no download URL")

        progress = await self._emit(progress, OperationStage.DOWNLOADING)
        tracker = DownloadProgressTracker(progress, callbacks=[self._remember, *self.progress_callbacks])
        download = await self.downloader.fetch(
            target.download_url,
            temp_path,
            expected_size=target.size_bytes,
            expected_checksum=target.checksum,
            progress=tracker,
            deadline=self._deadline(),
            artifact_format=target.format,
        )
        return download.report, "download"

    async def _commit_failed(self, progress: UpdateProgress, target: ModelVersion,
                             existing: Optional[InstalledModel], final_path: Path,
                             backup_created: bool, cause: Exception) -> ModelKeeperError:
        logger.critical(
            f"Manual intervention required: {final_path} holds {target.model_id} {target.version} "
            f"but the local state could not be written: {cause}"
        )
        restored = False
        if existing is not None:
            if existing.path != final_path:
                # The previous file was never touched; drop the unrecorded one.
                restored = remove_file(final_path)
            elif backup_created:
                restored = await self.backups.restore(
                    target.model_id, existing.version, final_path, final_path.suffix
                )
        if restored:
            logger.warning(f"Restored {target.model_id} {existing.version} so disk matches the recorded state")

        error = StateCommitError(
            f"Installed {final_path.name} but could not record it: {cause}",
            metadata={"file_path": str(final_path), "restored_previous": restored},
        )
        error.__cause__ = cause
        final = OperationStage.ROLLED_BACK if restored else OperationStage.FAILED
        return await self._fail(progress, error, OperationStage.COMMITTING, final=final)

    # Updates

    async def check_for_updates(self) -> List[UpdateCandidate]:
        """
        Find installed models whose registry current version is newer and compatible.

        Records the check time in the local state.
        """
        state = self.local_state.load()
        registry = self.registry.load()

        candidates = []
        for installed in sorted(state.installed_models.values(), key=lambda m: m.key):
            model = registry.models.get(installed.model_id)
            if model is None:
                logger.warning(f"Installed model {installed.model_id} is no longer in the registry")
                continue
            latest = model.current
            if latest is None or not self.comparator.is_newer(latest.version, installed.version):
                continue
            if not self.comparator.satisfies(latest.compatibility):
                logger.info(
                    f"{installed.model_id} {latest.version} is newer but incompatible with "
                    f"app version {self.settings.app_version}"
                )
                continue
            candidates.append(UpdateCandidate(
                model_id=installed.model_id,
                variant=installed.variant,
                current_version=installed.version,
                latest_version=latest.version,
                update_type=self.comparator.classify_update(installed.version, latest.version),
                is_breaking=self.comparator.is_breaking(installed.version, latest.version),
                changelog=latest.changelog,
                size_bytes=latest.size_bytes,
                deprecated=latest.deprecated,
            ))

        await asyncio.to_thread(self.local_state.touch_last_check)
        logger.info(f"Found {len(candidates)} available updates")
        return candidates

    async def _outcome(self, model_id: str, variant: Optional[str], force: bool,
                       action: str = "update") -> UpdateOutcome:
        try:
            result = await self._run(model_id, variant, None, force=force, action=action)
            return UpdateOutcome(model_id, result.variant, result=result)
        except ModelKeeperError as e:
            return UpdateOutcome(model_id, variant or "", error=e)

    async def update(self, model_id: Optional[str] = None, force: bool = False) -> List[UpdateOutcome]:
        """
        Bring models to their registry current version.

        With ``model_id``, updates every installed variant of it (or installs the
        default variant if none is installed). Without it, applies every update
        candidate. Models update concurrently and fail independently.
        """
        if model_id is not None:
            self.registry.get_model(model_id)
            variants = [m.variant for m in self.local_state.installed_for(model_id)] or [None]
            jobs = [(model_id, variant) for variant in variants]
        else:
            jobs = [(c.model_id, c.variant) for c in await self.check_for_updates()]

        outcomes = await asyncio.gather(*(self._outcome(mid, variant, force) for mid, variant in jobs))
        failed = [o for o in outcomes if not o.ok]
        if failed:
            logger.warning(f"{len(failed)} of {len(outcomes)} updates failed")
        return list(outcomes)

    async def install_all(self, model_ids: Optional[List[str]] = None,
                          force: bool = False) -> List[UpdateOutcome]:
        """
        Install several models concurrently, every registry model by default.

        Each model installs its current version in its default variant.
        Already installed models are no-ops unless ``force``. A failure is
        logged and reported in its outcome without stopping the others.
        """
        if model_ids is None:
            model_ids = [m.id for m in self.registry.list_models()]
        logger.info(f"Installing {len(model_ids)} models")

        outcomes = await asyncio.gather(
            *(self._outcome(mid, None, force, action="install") for mid in model_ids)
        )
        for outcome in outcomes:
            if not outcome.ok:
                logger.error(f"Failed to install {outcome.model_id}: {outcome.error}")
        return list(outcomes)

    # Rollback

    def _resolve_installed(self, model_id: str, variant: Optional[str]) -> InstalledModel:
        if variant is not None:
            installed = self.local_state.get(model_id, variant)
            if installed is None:
                raise NotFoundError(f"{model_id}-{variant} is not installed", model_id=model_id)
            return installed
        installs = self.local_state.installed_for(model_id)
        if not installs:
            raise NotFoundError(f"{model_id} is not installed", model_id=model_id)
        if len(installs) > 1:
            raise ModelKeeperError(
                f"{model_id} has several installed variants "
                f"({', '.join(sorted(m.variant for m in installs))}); choose one",
                model_id=model_id,
            )
        return installs[0]

    async def rollback(self, model_id: str, target_version: Optional[str] = None,
                       variant: Optional[str] = None, cleanup_backup: bool = False) -> OperationResult:
        """
        Return an installed model to an earlier version.

        Args:
            model_id: Installed model id
            target_version: Version to return to; the numerically previous
                registry version by default
            variant: Needed only when several variants are installed
            cleanup_backup: Delete the restored backup after a successful rollback

        Returns:
            OperationResult with ``source`` ``"backup"`` or ``"download"``
        """
        installed = self._resolve_installed(model_id, variant)
        if target_version is None:
            target_version = self.registry.previous_version(model_id, installed.version)
            if target_version is None:
                raise NotFoundError(
                    f"No version of {model_id} earlier than {installed.version} is published",
                    model_id=model_id,
                    version=installed.version,
                )
        logger.info(f"Rolling back {model_id}-{installed.variant} from {installed.version} to {target_version}")

        result = await self._run(
            model_id, installed.variant, target_version, force=False, action="rollback", prefer_backup=True
        )
        if cleanup_backup and result.source == "backup":
            self.backups.remove(model_id, target_version)
        return result

    # Inventory and housekeeping

    def list_installed(self) -> List[InstalledModel]:
        return self.local_state.list_installed()

    def available_models(self) -> List[ModelInfo]:
        """Registry models with no installed variant."""
        installed_ids = {m.model_id for m in self.local_state.list_installed()}
        return [m for m in self.registry.list_models() if m.id not in installed_ids]

    def version_history(self, model_id: str) -> List[ModelVersion]:
        return self.registry.version_history(model_id)

    async def verify_installed(self, model_id: Optional[str] = None) -> Dict[str, VerificationReport]:
        """
        Re-check installed artifacts against what was recorded at install time.

        Sizes are compared with the configured tolerance.
        """
        reports = {}
        for installed in self.local_state.list_installed():
            if model_id is not None and installed.model_id != model_id:
                continue
            report = await asyncio.to_thread(
                self.verifier.verify,
                installed.path,
                expected_size=installed.size_bytes,
                expected_checksum=installed.checksum,
                exact_size=False,
                artifact_format=ArtifactFormat.from_tag(installed.path.suffix),
            )
            if not report.ok:
                logger.warning(f"{installed.key} failed verification: {'; '.join(report.messages)}")
            reports[installed.key] = report
        return reports

    async def remove(self, model_id: str, variant: Optional[str] = None) -> List[InstalledModel]:
        """Delete installed artifacts and their state entries. Backups are kept."""
        targets = self.local_state.installed_for(model_id)
        if variant is not None:
            targets = [m for m in targets if m.variant == variant]
        if not targets:
            raise NotFoundError(f"{model_id} is not installed", model_id=model_id)

        removed = []
        for installed in targets:
            async with self.locks.hold(installed.model_id, installed.variant):
                entry = await asyncio.to_thread(self.local_state.remove, installed.model_id, installed.variant)
                if entry is not None:
                    remove_file(entry.path)
                    removed.append(entry)
                    logger.info(f"Removed {entry.key} {entry.version}")
        return removed

    def cleanup(self, keep_count: Optional[int] = None, protect_predecessors: bool = True) -> List[Backup]:
        """
        Prune old backups, keeping ``keep_count`` per model.

        Unless ``protect_predecessors`` is False, the backup of each installed
        version's immediate predecessor is never deleted.
        """
        keep_count = keep_count if keep_count is not None else self.settings.backup_keep_count
        registry = self.registry.load()
        installed_models = self.local_state.list_installed()
        known_ids = set(registry.models) | {m.model_id for m in installed_models}
        protect = set()
        if protect_predecessors:
            for installed in installed_models:
                if installed.model_id not in registry.models:
                    continue
                previous = self.registry.previous_version(installed.model_id, installed.version)
                if previous:
                    protect.add((installed.model_id, previous))
        deleted = self.backups.prune(keep_count, protect=protect, model_ids=known_ids)
        logger.info(f"Cleanup removed {len(deleted)} backups")
        return deleted

    def set_auto_update(self, enabled: bool) -> LocalState:
        state = self.local_state.set_auto_update(enabled)
        logger.info(f"Automatic updates {'enabled' if enabled else 'disabled'}")
        return state

    def refresh_registry(self, source: Path) -> RegistryDocument:
        return self.registry.refresh_from_file(source)
