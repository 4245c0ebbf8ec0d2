"""Build recipes and the extension factory.

A recipe says how one named extension is fetched and compiled: which
provider and upstream package, which configure flags, whether it loads as a
``zend_extension``, which runtime versions it supports and which hooks run
around the build. Unknown names get a generic recipe.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from extensions.errors import RecipeError
from pipeline.config import Config

logger = logging.getLogger(__name__)

_LEADING_DIGITS = re.compile(r"^(\d+)")


def compare_versions(v1: str, v2: str) -> int:
    """Compare two version strings.

    Only the leading digits of each dotted part count, so "8.1.0RC1"
    compares equal to "8.1.0".

    Returns:
        -1 if v1 < v2, 0 if equal, 1 if v1 > v2.
    """
    try:
        parts1 = [_numeric(x) for x in v1.split(".")]
        parts2 = [_numeric(x) for x in v2.split(".")]

        for p1, p2 in zip(parts1, parts2):
            if p1 < p2:
                return -1
            if p1 > p2:
                return 1

        if len(parts1) < len(parts2):
            return -1
        if len(parts1) > len(parts2):
            return 1

        return 0
    except ValueError:
        # Fallback to string comparison
        return -1 if v1 < v2 else (1 if v1 > v2 else 0)


def _numeric(part: str) -> int:
    match = _LEADING_DIGITS.match(part)
    if not match:
        raise ValueError(part)
    return int(match.group(1))


def version_matches(version: str, pattern: str) -> bool:
    """Whether ``version`` equals ``pattern`` or lies under it ("2.9" matches "2.9.3")."""
    if version == pattern:
        return True
    return version.startswith(pattern + ".")


@dataclass(frozen=True)
class ExtensionRecipe:
    """Build metadata for one extension.

    Attributes:
        name: Extension name as registered with the runtime (lowercase).
        package: Upstream package name (PECL name or owner/repo).
        provider: Provider kind used to fetch the package.
        configure_options: Default ./configure flags.
        zend: Load with ``zend_extension=`` instead of ``extension=``.
        artifact: Shared object produced under ``modules/``.
        min_runtime: Lowest supported runtime version (inclusive).
        max_runtime: Highest supported runtime version (inclusive, prefix match).
        incompatible_versions: Extension versions known not to build.
        pre_build: Commands run in the source root before phpize.
        post_build: Commands run in the source root after make.
        ini_settings: Extra ini directives written next to the load line.
        env: Extra environment for every build command.
        default_version: Version token used when the caller gives none.
    """

    name: str
    package: str = ""
    provider: str = "pecl"
    configure_options: tuple[str, ...] = ()
    zend: bool = False
    artifact: str = ""
    min_runtime: str | None = None
    max_runtime: str | None = None
    incompatible_versions: tuple[str, ...] = ()
    pre_build: tuple[tuple[str, ...], ...] = ()
    post_build: tuple[tuple[str, ...], ...] = ()
    ini_settings: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    default_version: str = "stable"
    generic: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise RecipeError("Recipe name is required")
        object.__setattr__(self, "name", self.name.lower())
        if not self.package:
            object.__setattr__(self, "package", self.name)
        if not self.artifact:
            object.__setattr__(self, "artifact", f"{self.name}.so")
        for hook in (*self.pre_build, *self.post_build):
            if not hook or not hook[0]:
                raise RecipeError(f"Recipe {self.name!r} has an empty build hook")

    def supports_runtime(self, runtime_version: str) -> bool:
        """Check the runtime version against min/max bounds."""
        if self.min_runtime and compare_versions(runtime_version, self.min_runtime) < 0:
            return False
        if self.max_runtime and not version_matches(runtime_version, self.max_runtime):
            if compare_versions(runtime_version, self.max_runtime) > 0:
                return False
        return True

    def is_known_broken(self, version: str) -> bool:
        return any(version_matches(version, v) for v in self.incompatible_versions)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtensionRecipe:
        """Create a recipe from a mapping (one YAML list item).

        Raises:
            RecipeError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise RecipeError(f"Recipe must be a mapping, got {type(data).__name__}")
        try:
            return cls(
                name=str(data["name"]),
                package=str(data.get("package", "")),
                provider=str(data.get("provider", "pecl")).lower(),
                configure_options=tuple(str(o) for o in data.get("configure_options", [])),
                zend=bool(data.get("zend", False)),
                artifact=str(data.get("artifact", "")),
                min_runtime=_str_or_none(data.get("min_runtime")),
                max_runtime=_str_or_none(data.get("max_runtime")),
                incompatible_versions=tuple(
                    str(v) for v in data.get("incompatible_versions", [])
                ),
                pre_build=_commands(data.get("pre_build", [])),
                post_build=_commands(data.get("post_build", [])),
                ini_settings={str(k): str(v) for k, v in data.get("ini_settings", {}).items()},
                env={str(k): str(v) for k, v in data.get("env", {}).items()},
                default_version=str(data.get("default_version", "stable")),
            )
        except KeyError as e:
            raise RecipeError(f"Recipe missing field: {e}") from e
        except (TypeError, AttributeError, ValueError) as e:
            raise RecipeError(f"Invalid recipe {data.get('name')!r}: {e}") from e


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def _commands(value: Any) -> tuple[tuple[str, ...], ...]:
    """Normalise hook commands: strings are split on whitespace."""
    commands = []
    for command in value:
        if isinstance(command, str):
            commands.append(tuple(command.split()))
        else:
            commands.append(tuple(str(a) for a in command))
    return tuple(commands)


BUILTIN_RECIPES: tuple[ExtensionRecipe, ...] = (
    ExtensionRecipe(name="xdebug", zend=True, min_runtime="7.2"),
    ExtensionRecipe(
        name="yaml",
        configure_options=("--with-yaml",),
        min_runtime="7.1",
    ),
    ExtensionRecipe(
        name="redis",
        configure_options=("--enable-redis",),
        min_runtime="7.0",
    ),
    ExtensionRecipe(name="igbinary", min_runtime="7.0"),
    ExtensionRecipe(
        name="imagick",
        configure_options=("--with-imagick",),
        min_runtime="7.0",
    ),
    ExtensionRecipe(
        name="memcached",
        configure_options=("--disable-memcached-sasl",),
        min_runtime="7.0",
    ),
    ExtensionRecipe(
        name="mongodb",
        configure_options=("--enable-mongodb",),
        min_runtime="7.4",
    ),
    ExtensionRecipe(
        name="swoole",
        package="swoole/swoole-src",
        provider="github",
        configure_options=("--enable-sockets", "--enable-openssl"),
        min_runtime="8.0",
    ),
)


class ExtensionFactory:
    """Registry mapping extension names to build recipes.

    Example:
        >>> factory = ExtensionFactory.with_builtin()
        >>> factory.lookup("xdebug").zend
        True
        >>> factory.lookup("apcu") is None
        True
    """

    def __init__(self, recipes: list[ExtensionRecipe] | None = None) -> None:
        self._recipes: dict[str, ExtensionRecipe] = {}
        for recipe in recipes or []:
            self.register(recipe)

    @classmethod
    def with_builtin(cls) -> ExtensionFactory:
        return cls(list(BUILTIN_RECIPES))

    @classmethod
    def from_config(cls, config: Config) -> ExtensionFactory:
        """Builtin recipes (unless disabled) plus the configured recipe file."""
        factory = cls.with_builtin() if config.recipes.builtin else cls()
        if config.recipes.file:
            factory.load_yaml(Path(config.recipes.file).expanduser())
        return factory

    def register(self, recipe: ExtensionRecipe) -> None:
        """Register a recipe, replacing any previous one with the same name."""
        if recipe.name in self._recipes:
            logger.debug("Overriding recipe: %s", recipe.name)
        self._recipes[recipe.name] = recipe

    def lookup(self, name: str) -> ExtensionRecipe | None:
        """Get the recipe for an extension.

        Args:
            name: Extension name (case-insensitive)

        Returns:
            Recipe or None if no recipe is registered.
        """
        return self._recipes.get(name.lower())

    def generic(self, name: str) -> ExtensionRecipe:
        """Default recipe for extensions without a registered one.

        The upstream package keeps the caller's spelling ("APCu") while the
        registered name is lowercased.
        """
        return ExtensionRecipe(name=name, package=name, generic=True)

    def resolve(self, name: str) -> ExtensionRecipe:
        return self.lookup(name) or self.generic(name)

    def names(self) -> list[str]:
        return sorted(self._recipes)

    def recipes(self) -> list[ExtensionRecipe]:
        return [self._recipes[name] for name in self.names()]

    def load_yaml(self, path: Path) -> int:
        """Load recipes from a YAML file with a top-level ``recipes`` list.

        Returns:
            Number of recipes loaded.

        Raises:
            RecipeError: If the file is missing or invalid.
        """
        if not path.exists():
            raise RecipeError(f"Recipe file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RecipeError(f"Invalid YAML in {path}: {e}") from e

        items = data.get("recipes", []) if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise RecipeError(f"{path} must contain a 'recipes' list")

        for item in items:
            self.register(ExtensionRecipe.from_dict(item))
        logger.info("Loaded %d recipes from %s", len(items), path)
        return len(items)

