"""Build command values.

Commands are plain data built from recipe + options + runtime paths.
Building one never runs anything; ``ShellTool`` executes them.
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from extensions.recipes import ExtensionRecipe
from extensions.runtime import TargetRuntime


@dataclass(frozen=True)
class BuildCommand:
    """One subprocess invocation.

    Attributes:
        program: Executable (path or name on PATH).
        args: Arguments after the program.
        cwd: Working directory.
        env: Variables added on top of the inherited environment.
        stage: Install stage this command belongs to.
    """

    program: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    stage: str = ""

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]

    def full_env(self) -> dict[str, str]:
        return {**os.environ, **self.env}

    def render(self) -> str:
        """Shell line that reproduces this command by hand."""
        parts = []
        if self.cwd is not None:
            parts.append(f"cd {shlex.quote(str(self.cwd))} &&")
        parts.extend(f"{k}={shlex.quote(v)}" for k, v in self.env.items())
        parts.append(shlex.join(self.argv))
        return " ".join(parts)

    def __str__(self) -> str:
        return shlex.join(self.argv)


def option_key(option: str) -> str:
    """Name part of a configure option ("--with-foo=/usr" -> "--with-foo")."""
    return option.split("=", 1)[0]


def merge_configure_options(
    defaults: Iterable[str], overrides: Iterable[str]
) -> list[str]:
    """Merge recipe defaults with caller options.

    Options are keyed by name; an override replaces the default in its
    original position, new options are appended in the order given.
    ``--enable-x`` and ``--disable-x`` (likewise with/without) share a key
    so the caller can switch a default off.
    """
    merged: dict[str, str] = {}
    for option in defaults:
        merged[_canonical_key(option)] = option
    for option in overrides:
        merged[_canonical_key(option)] = option
    return list(merged.values())


def _canonical_key(option: str) -> str:
    key = option_key(option)
    for negative, positive in (("--disable-", "--enable-"), ("--without-", "--with-")):
        if key.startswith(negative):
            return positive + key[len(negative):]
    return key


def phpize_command(
    runtime: TargetRuntime, source_root: Path, env: Mapping[str, str] | None = None
) -> BuildCommand:
    return BuildCommand(
        program=str(runtime.phpize),
        cwd=source_root,
        env=dict(env or {}),
        stage="configure",
    )


def configure_command(
    runtime: TargetRuntime,
    source_root: Path,
    recipe: ExtensionRecipe,
    user_options: Iterable[str] = (),
    env: Mapping[str, str] | None = None,
) -> BuildCommand:
    options = merge_configure_options(recipe.configure_options, user_options)
    # The runtime's php-config always wins over anything passed in
    options = [o for o in options if option_key(o) != "--with-php-config"]
    return BuildCommand(
        program="./configure",
        args=(f"--with-php-config={runtime.php_config}", *options),
        cwd=source_root,
        env={**recipe.env, **(env or {})},
        stage="configure",
    )


def make_command(
    source_root: Path,
    jobs: int = 1,
    target: str | None = None,
    env: Mapping[str, str] | None = None,
) -> BuildCommand:
    args = [f"-j{max(1, jobs)}"]
    if target:
        args.append(target)
    return BuildCommand(
        program="make",
        args=tuple(args),
        cwd=source_root,
        env=dict(env or {}),
        stage="build",
    )


def hook_command(
    command: Iterable[str],
    source_root: Path,
    stage: str,
    runtime: TargetRuntime,
    env: Mapping[str, str] | None = None,
) -> BuildCommand:
    """Recipe hook command with the runtime's paths exported."""
    argv = list(command)
    if not argv:
        raise ValueError("Empty hook command")
    hook_env = {
        "PHP_PREFIX": str(runtime.root),
        "PHP_CONFIG": str(runtime.php_config),
        "PHPIZE": str(runtime.phpize),
        "PHP_INCLUDE_DIR": str(runtime.include_dir),
        "PHP_EXTENSION_DIR": str(runtime.extension_dir),
        **(env or {}),
    }
    return BuildCommand(
        program=argv[0],
        args=tuple(argv[1:]),
        cwd=source_root,
        env=hook_env,
        stage=stage,
    )
