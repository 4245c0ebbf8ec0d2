"""Extension manager: build and register extensions against a runtime.

Drives one install attempt through resolve -> fetch -> configure -> build
-> install, records every stage, and only touches the runtime's extension
dir and manifest in the final stage.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import httpx

from extensions.context import InstallContext
from extensions.downloader import ExtensionDownloader, ExtractedSource
from extensions.errors import (
    BuildError,
    Cancelled,
    ConfigureError,
    ExtensionError,
    IncompatibleRuntimeError,
    InstallError,
    ManifestError,
    RecipeError,
    StageError,
)
from extensions.manifest import (
    ExtensionManifest,
    ManifestEntry,
    remove_ini,
    write_ini,
)
from extensions.recipes import ExtensionFactory, ExtensionRecipe
from extensions.runtime import TargetRuntime, runtime_lock
from pipeline.config import Config, get_config
from providers import get_provider
from schemas.install_result import (
    InstallResult,
    InstallStage,
    InstallStatus,
    StageRecord,
    StageStatus,
)
from tools.base import ToolResult, ToolStatus
from tools.build_commands import (
    BuildCommand,
    configure_command,
    hook_command,
    make_command,
    phpize_command,
)
from tools.shell_tool import ShellTool

logger = logging.getLogger(__name__)

# error_kind for failures outside the ExtensionError taxonomy
UNEXPECTED_ERROR_KIND = "unexpected_error"


@dataclass
class InstallOptions:
    """Caller choices for one install.

    Attributes:
        version: Version token; None uses the recipe's default ("stable").
        provider: Provider kind override.
        package: Upstream package override (e.g. a local path).
        configure_options: Extra ./configure flags, winning over the recipe.
        jobs: Parallel make jobs; None uses config.
        force_fetch: Drop the cached archive and fetch again.
        keep_source: Keep extracted sources after success; None uses config.
        env: Extra environment for build commands.
    """

    version: str | None = None
    provider: str | None = None
    package: str | None = None
    configure_options: list[str] = field(default_factory=list)
    jobs: int | None = None
    force_fetch: bool = False
    keep_source: bool | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class InstallRequest:
    """One entry for ``ExtensionManager.install_many``."""

    extension: str | ExtensionRecipe
    runtime: TargetRuntime
    options: InstallOptions | None = None


def _extension_name(recipe_or_name: str | ExtensionRecipe) -> str:
    if isinstance(recipe_or_name, ExtensionRecipe):
        return recipe_or_name.name
    return recipe_or_name.lower()


class _StageLog:
    """Collects commands and output for one stage."""

    def __init__(self, stage: InstallStage) -> None:
        self.stage = stage
        self.started_at = datetime.now()
        self._started = time.monotonic()
        self.commands: list[str] = []
        self.outputs: list[str] = []
        self.exit_code: int | None = None

    def add(self, command: BuildCommand, result: ToolResult) -> None:
        self.commands.append(result.command or command.render())
        self.outputs.append(result.stdout)
        self.exit_code = result.returncode

    def record(self, status: StageStatus, error: str | None = None) -> StageRecord:
        return StageRecord(
            stage=self.stage,
            status=status,
            started_at=self.started_at,
            duration_seconds=round(time.monotonic() - self._started, 3),
            commands=self.commands,
            output="".join(self.outputs),
            exit_code=self.exit_code,
            error=error,
        )


class ExtensionManager:
    """Install and manage extensions for target runtimes.

    Installs against the same runtime are serialized on a per-runtime lock;
    different runtimes can be installed concurrently (see ``install_many``).

    Example:
        >>> manager = ExtensionManager()
        >>> runtime = TargetRuntime.active(get_config())
        >>> result = manager.install_extension("APCu", runtime, InstallOptions(version="latest"))
        >>> result.artifact_path
        '/home/me/.phpext/php/8.1/lib/php/extensions/apcu.so'
    """

    def __init__(
        self,
        factory: ExtensionFactory | None = None,
        downloader: ExtensionDownloader | None = None,
        config: Config | None = None,
        shell: ShellTool | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            factory: Recipe registry (default: builtin + configured file)
            downloader: Source downloader
            config: Paths, timeouts and provider settings
            shell: Subprocess runner for build commands
            http_client: HTTP client shared with providers and downloader
        """
        self.config = config or get_config()
        self.factory = factory or ExtensionFactory.from_config(self.config)
        self.downloader = downloader or ExtensionDownloader(self.config, client=http_client)
        self.shell = shell or ShellTool(timeout=self.config.build.build_timeout)
        self.http_client = http_client

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install_extension(
        self,
        recipe_or_name: str | ExtensionRecipe,
        runtime: TargetRuntime,
        options: InstallOptions | None = None,
        context: InstallContext | None = None,
    ) -> InstallResult:
        """Fetch, build and register one extension.

        Never raises for install failures: the returned result carries the
        failing stage, the error kind and the captured output.

        Args:
            recipe_or_name: Recipe, or extension name looked up in the factory
            runtime: Runtime to build against and register with
            options: Version, provider and build overrides
            context: Cancellation, stage timeouts and logger

        Returns:
            InstallResult (done, failed or cancelled).
        """
        options = options or InstallOptions()
        context = context or InstallContext.from_config(self.config)

        try:
            with runtime_lock(runtime):
                return self._install(recipe_or_name, runtime, options, context)
        except ExtensionError as e:
            # Only acquiring the runtime lock gets here
            logger.error("%s", e)
            return InstallResult(
                extension=_extension_name(recipe_or_name),
                runtime_version=runtime.version,
                status=InstallStatus.FAILED,
                stage=InstallStage.RESOLVE,
                error_kind=e.kind,
                message=str(e),
                completed_at=datetime.now(),
            )

    def install_many(
        self,
        requests: list[InstallRequest],
        max_workers: int = 4,
        context: InstallContext | None = None,
    ) -> list[InstallResult]:
        """Install several extensions, in parallel across runtimes.

        Requests for the same runtime still run one at a time.

        Returns:
            Results in the order of ``requests``.
        """
        if not requests:
            return []
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = [
                pool.submit(
                    self.install_extension,
                    request.extension,
                    request.runtime,
                    request.options,
                    context,
                )
                for request in requests
            ]
            return [future.result() for future in futures]

    def _install(
        self,
        recipe_or_name: str | ExtensionRecipe,
        runtime: TargetRuntime,
        options: InstallOptions,
        context: InstallContext,
    ) -> InstallResult:
        log = context.logger
        name = _extension_name(recipe_or_name)
        started_at = datetime.now()
        records: list[StageRecord] = []
        stage_log = _StageLog(InstallStage.RESOLVE)
        source: ExtractedSource | None = None
        version: str | None = None

        def enter(stage: InstallStage) -> None:
            nonlocal stage_log
            records.append(stage_log.record(StageStatus.COMPLETED))
            stage_log = _StageLog(stage)
            log.info("[%s@%s] %s", name, runtime.version, stage.value)

        try:
            log.info("[%s@%s] %s", name, runtime.version, InstallStage.RESOLVE.value)
            recipe = self._resolve_recipe(recipe_or_name)
            runtime.validate()
            if not recipe.supports_runtime(runtime.version):
                raise IncompatibleRuntimeError(
                    f"{recipe.name} supports runtime "
                    f"{recipe.min_runtime or '*'} - {recipe.max_runtime or '*'}, "
                    f"not {runtime.version}"
                )
            provider_kind = options.provider or recipe.provider
            package = options.package or (
                recipe.package if provider_kind == recipe.provider else recipe.name
            )
            try:
                provider = get_provider(provider_kind, self.config.providers, self.http_client)
            except ValueError as e:
                raise RecipeError(str(e)) from e
            token = options.version or recipe.default_version

            enter(InstallStage.FETCH)
            source = self.downloader.download(
                provider, package, token, context=context, force=options.force_fetch
            )
            version = source.locator.version
            if recipe.is_known_broken(version):
                raise IncompatibleRuntimeError(
                    f"{recipe.name} {version} is marked incompatible"
                )

            enter(InstallStage.CONFIGURE)
            self._configure(recipe, source, runtime, options, context, stage_log)

            enter(InstallStage.BUILD)
            self._build(recipe, source, runtime, options, context, stage_log)

            enter(InstallStage.INSTALL)
            context.check_cancelled()
            artifact = self._install_artifact(recipe, source, runtime, version, provider_kind)
            records.append(stage_log.record(StageStatus.COMPLETED))

        except Cancelled as e:
            records.append(stage_log.record(StageStatus.CANCELLED, str(e)))
            log.warning("[%s@%s] cancelled during %s", name, runtime.version, stage_log.stage.value)
            if source is not None:
                source.cleanup()
            return InstallResult(
                extension=name,
                version=version,
                runtime_version=runtime.version,
                status=InstallStatus.CANCELLED,
                stage=stage_log.stage,
                error_kind=e.kind,
                message=str(e),
                stages=records,
                started_at=started_at,
                completed_at=datetime.now(),
            )
        except ExtensionError as e:
            records.append(stage_log.record(StageStatus.FAILED, str(e)))
            log.error(
                "[%s@%s] %s failed (%s): %s",
                name, runtime.version, stage_log.stage.value, e.kind, e,
            )
            return InstallResult(
                extension=name,
                version=version,
                runtime_version=runtime.version,
                status=InstallStatus.FAILED,
                stage=stage_log.stage,
                error_kind=e.kind,
                message=str(e),
                source_path=str(source.source_root) if source else None,
                from_cache=source.from_cache if source else False,
                stages=records,
                started_at=started_at,
                completed_at=datetime.now(),
            )
        except Exception as e:
            # Errors outside the taxonomy are reported as UNEXPECTED_ERROR_KIND
            records.append(stage_log.record(StageStatus.FAILED, f"{type(e).__name__}: {e}"))
            log.exception(
                "[%s@%s] %s failed unexpectedly", name, runtime.version, stage_log.stage.value
            )
            return InstallResult(
                extension=name,
                version=version,
                runtime_version=runtime.version,
                status=InstallStatus.FAILED,
                stage=stage_log.stage,
                error_kind=UNEXPECTED_ERROR_KIND,
                message=f"{type(e).__name__}: {e}",
                source_path=str(source.source_root) if source else None,
                from_cache=source.from_cache if source else False,
                stages=records,
                started_at=started_at,
                completed_at=datetime.now(),
            )

        keep = self.config.build.keep_source if options.keep_source is None else options.keep_source
        if not keep:
            source.cleanup()

        log.info("[%s@%s] installed %s", name, runtime.version, artifact)
        return InstallResult(
            extension=name,
            version=version,
            runtime_version=runtime.version,
            status=InstallStatus.DONE,
            stage=InstallStage.DONE,
            message=f"Installed {name} {version}",
            artifact_path=str(artifact),
            source_path=str(source.source_root) if keep else None,
            from_cache=source.from_cache,
            stages=records,
            started_at=started_at,
            completed_at=datetime.now(),
        )

    def _resolve_recipe(self, recipe_or_name: str | ExtensionRecipe) -> ExtensionRecipe:
        if isinstance(recipe_or_name, ExtensionRecipe):
            return recipe_or_name
        recipe = self.factory.lookup(recipe_or_name)
        if recipe is None:
            logger.info("No recipe for %s, using generic build", recipe_or_name)
            return self.factory.generic(recipe_or_name)
        return recipe

    def _configure(
        self,
        recipe: ExtensionRecipe,
        source: ExtractedSource,
        runtime: TargetRuntime,
        options: InstallOptions,
        context: InstallContext,
        stage_log: _StageLog,
    ) -> None:
        env = {**recipe.env, **options.env}
        commands = [
            hook_command(hook, source.source_root, "configure", runtime, env)
            for hook in recipe.pre_build
        ]
        commands.append(phpize_command(runtime, source.source_root, env))
        commands.append(
            configure_command(runtime, source.source_root, recipe, options.configure_options, env)
        )
        for command in commands:
            self._run(command, context.configure_timeout, context, stage_log, ConfigureError)

    def _build(
        self,
        recipe: ExtensionRecipe,
        source: ExtractedSource,
        runtime: TargetRuntime,
        options: InstallOptions,
        context: InstallContext,
        stage_log: _StageLog,
    ) -> None:
        env = {**recipe.env, **options.env}
        jobs = options.jobs or self.config.build.effective_jobs
        commands = [make_command(source.source_root, jobs, env=env)]
        commands.extend(
            hook_command(hook, source.source_root, "build", runtime, env)
            for hook in recipe.post_build
        )
        for command in commands:
            self._run(command, context.build_timeout, context, stage_log, BuildError)

    def _run(
        self,
        command: BuildCommand,
        timeout: float,
        context: InstallContext,
        stage_log: _StageLog,
        error_cls: type[StageError],
    ) -> None:
        context.check_cancelled()
        context.logger.debug("$ %s", command.render())
        result = self.shell.run(command, timeout=timeout, cancel_event=context.cancel_event)
        stage_log.add(command, result)

        if result.status == ToolStatus.CANCELLED:
            raise Cancelled(f"Cancelled while running {command}")
        if not result.success:
            raise error_cls(
                f"{command} failed: {result.error}",
                command=result.command,
                output=result.stdout,
                exit_code=result.returncode,
            )

    def _install_artifact(
        self,
        recipe: ExtensionRecipe,
        source: ExtractedSource,
        runtime: TargetRuntime,
        version: str,
        provider_kind: str,
    ) -> Path:
        """Copy the built object into place and register it.

        The previous artifact is restored if registration fails.
        """
        built = source.source_root / "modules" / recipe.artifact
        if not built.exists():
            raise InstallError(f"Build did not produce modules/{recipe.artifact}")

        target = runtime.extension_dir / recipe.artifact
        backup = target.with_name(target.name + ".bak")
        had_previous = target.exists()

        try:
            runtime.extension_dir.mkdir(parents=True, exist_ok=True)
            if had_previous:
                shutil.copy2(target, backup)
            tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.tmp")
            shutil.copy2(built, tmp)
            os.replace(tmp, target)
        except OSError as e:
            raise InstallError(f"Cannot install {recipe.artifact} into {runtime.extension_dir}: {e}") from e

        try:
            self._register(recipe, runtime, target, version, provider_kind)
        except (OSError, ManifestError) as e:
            logger.warning("Registering %s failed, rolling back artifact", recipe.name)
            self._rollback_artifact(target, backup, had_previous)
            raise InstallError(f"Cannot register {recipe.name} with runtime {runtime.version}: {e}") from e

        backup.unlink(missing_ok=True)
        return target

    def _register(
        self,
        recipe: ExtensionRecipe,
        runtime: TargetRuntime,
        artifact: Path,
        version: str,
        provider_kind: str,
    ) -> None:
        manifest = ExtensionManifest.load(runtime.manifest_path)
        previous = manifest.get(recipe.name)
        entry = ManifestEntry(
            name=recipe.name,
            version=version,
            artifact=str(artifact),
            zend=recipe.zend,
            provider=provider_kind,
            ini_settings=dict(recipe.ini_settings),
        )
        ini_path = runtime.ini_path(recipe.name)
        replaced = manifest.upsert(entry)
        write_ini(entry, ini_path)
        try:
            manifest.save()
        except ManifestError:
            if previous is not None:
                write_ini(previous, ini_path)
            else:
                remove_ini(ini_path)
            raise
        logger.debug("%s manifest entry for %s", "Updated" if replaced else "Added", recipe.name)

    @staticmethod
    def _rollback_artifact(target: Path, backup: Path, had_previous: bool) -> None:
        if had_previous and backup.exists():
            os.replace(backup, target)
        elif not had_previous:
            target.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Manage installed extensions
    # ------------------------------------------------------------------

    def list_installed(self, runtime: TargetRuntime) -> list[ManifestEntry]:
        """List registered extensions for a runtime, in manifest order."""
        return list(ExtensionManifest.load(runtime.manifest_path).entries)

    def get_installed(self, name: str, runtime: TargetRuntime) -> ManifestEntry | None:
        return ExtensionManifest.load(runtime.manifest_path).get(name)

    def is_installed(self, name: str, runtime: TargetRuntime) -> bool:
        return self.get_installed(name, runtime) is not None

    def enable(self, name: str, runtime: TargetRuntime) -> bool:
        """Enable a registered extension.

        Returns:
            True if enabled, False if not registered.
        """
        return self._set_enabled(name, runtime, True)

    def disable(self, name: str, runtime: TargetRuntime) -> bool:
        """Disable an extension without uninstalling it.

        Returns:
            True if disabled, False if not registered.
        """
        return self._set_enabled(name, runtime, False)

    def _set_enabled(self, name: str, runtime: TargetRuntime, enabled: bool) -> bool:
        with runtime_lock(runtime):
            manifest = ExtensionManifest.load(runtime.manifest_path)
            entry = manifest.set_enabled(name, enabled)
            if entry is None:
                return False
            write_ini(entry, runtime.ini_path(entry.name))
            manifest.save()
        logger.info("%s %s for runtime %s", "Enabled" if enabled else "Disabled", name, runtime.version)
        return True

    def uninstall(self, name: str, runtime: TargetRuntime) -> bool:
        """Remove an extension's artifact, ini file and manifest entry.

        Returns:
            True if uninstalled, False if not registered.
        """
        with runtime_lock(runtime):
            manifest = ExtensionManifest.load(runtime.manifest_path)
            entry = manifest.remove(name)
            if entry is None:
                return False
            manifest.save()
            remove_ini(runtime.ini_path(entry.name))
            if entry.artifact:
                Path(entry.artifact).unlink(missing_ok=True)
        logger.info("Uninstalled %s from runtime %s", name, runtime.version)
        return True

    def clean(self, name: str | None = None) -> int:
        """Remove leftover work directories from earlier attempts.

        Args:
            name: Only directories for this extension; None removes all

        Returns:
            Number of directories removed.
        """
        build_dir = self.downloader.build_dir
        if not build_dir.exists():
            return 0
        prefix = f"{name.lower()}-" if name else ""
        removed = 0
        for work_dir in build_dir.iterdir():
            if work_dir.is_dir() and work_dir.name.lower().startswith(prefix):
                shutil.rmtree(work_dir, ignore_errors=True)
                removed += 1
        return removed
