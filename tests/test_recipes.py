"""Tests for extensions.recipes."""

import pytest

from extensions.errors import RecipeError
from extensions.recipes import (
    ExtensionFactory,
    ExtensionRecipe,
    compare_versions,
    version_matches,
)
from pipeline.config import Config, RecipesConfig


class TestVersionHelpers:

    @pytest.mark.parametrize(
        "v1, v2, expected",
        [
            ("8.1", "8.1", 0),
            ("8.1.27", "8.1", 1),
            ("7.4", "8.0", -1),
            ("8.10", "8.9", 1),
            ("8.2.0RC1", "8.2.0", 0),
        ],
    )
    def test_compare_versions(self, v1, v2, expected):
        assert compare_versions(v1, v2) == expected

    def test_version_matches_prefix(self):
        assert version_matches("2.9.3", "2.9")
        assert version_matches("2.9", "2.9")
        assert not version_matches("2.90", "2.9")


class TestExtensionRecipe:

    def test_defaults(self):
        recipe = ExtensionRecipe(name="Redis")
        assert recipe.name == "redis"
        assert recipe.package == "redis"
        assert recipe.artifact == "redis.so"
        assert recipe.provider == "pecl"
        assert recipe.default_version == "stable"

    def test_runtime_bounds(self):
        recipe = ExtensionRecipe(name="x", min_runtime="7.4", max_runtime="8.2")
        assert recipe.supports_runtime("7.4")
        assert recipe.supports_runtime("8.2.15")
        assert not recipe.supports_runtime("7.3")
        assert not recipe.supports_runtime("8.3")

    def test_known_broken_versions(self):
        recipe = ExtensionRecipe(name="x", incompatible_versions=("3.0",))
        assert recipe.is_known_broken("3.0.1")
        assert not recipe.is_known_broken("3.1.0")

    def test_from_dict(self):
        recipe = ExtensionRecipe.from_dict(
            {
                "name": "Swoole",
                "provider": "GitHub",
                "package": "swoole/swoole-src",
                "configure_options": ["--enable-openssl"],
                "pre_build": ["./autogen.sh --quiet"],
                "ini_settings": {"swoole.use_shortname": "Off"},
                "min_runtime": 8.0,
            }
        )
        assert recipe.name == "swoole"
        assert recipe.provider == "github"
        assert recipe.pre_build == (("./autogen.sh", "--quiet"),)
        assert recipe.min_runtime == "8.0"

    def test_from_dict_requires_name(self):
        with pytest.raises(RecipeError, match="name"):
            ExtensionRecipe.from_dict({"provider": "pecl"})

    def test_from_dict_rejects_non_mapping(self):
        with pytest.raises(RecipeError):
            ExtensionRecipe.from_dict(["xdebug"])

    @pytest.mark.parametrize("hooks", [[""], ["   "], [[]]])
    def test_from_dict_rejects_empty_hook(self, hooks):
        with pytest.raises(RecipeError, match="empty build hook"):
            ExtensionRecipe.from_dict({"name": "demo", "pre_build": hooks})

    def test_empty_post_build_hook(self):
        with pytest.raises(RecipeError):
            ExtensionRecipe(name="demo", post_build=(("",),))


class TestExtensionFactory:

    def test_builtin_lookup_is_case_insensitive(self):
        factory = ExtensionFactory.with_builtin()
        recipe = factory.lookup("XDebug")
        assert recipe is not None
        assert recipe.zend is True

    def test_lookup_absent_returns_none(self):
        assert ExtensionFactory.with_builtin().lookup("apcu") is None

    def test_generic_keeps_package_spelling(self):
        recipe = ExtensionFactory.with_builtin().generic("APCu")
        assert recipe.generic is True
        assert recipe.name == "apcu"
        assert recipe.package == "APCu"
        assert recipe.configure_options == ()

    def test_resolve(self):
        factory = ExtensionFactory.with_builtin()
        assert factory.resolve("redis").generic is False
        assert factory.resolve("apcu").generic is True

    def test_register_overrides(self):
        factory = ExtensionFactory.with_builtin()
        factory.register(ExtensionRecipe(name="redis", configure_options=("--enable-redis-lz4",)))
        assert factory.lookup("redis").configure_options == ("--enable-redis-lz4",)

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "recipes.yaml"
        path.write_text(
            "recipes:\n"
            "  - name: apcu\n"
            "    configure_options: [--enable-apcu]\n"
            "  - name: pcov\n"
            "    min_runtime: '7.1'\n"
        )
        factory = ExtensionFactory()
        assert factory.load_yaml(path) == 2
        assert factory.names() == ["apcu", "pcov"]

    def test_load_yaml_errors(self, tmp_path):
        factory = ExtensionFactory()
        with pytest.raises(RecipeError, match="not found"):
            factory.load_yaml(tmp_path / "missing.yaml")

        bad = tmp_path / "bad.yaml"
        bad.write_text("recipes: {name: apcu}\n")
        with pytest.raises(RecipeError, match="'recipes' list"):
            factory.load_yaml(bad)

    def test_from_config(self, tmp_path):
        path = tmp_path / "recipes.yaml"
        path.write_text("recipes:\n  - name: apcu\n")

        factory = ExtensionFactory.from_config(
            Config(recipes=RecipesConfig(file=str(path), builtin=False))
        )

        assert factory.names() == ["apcu"]
