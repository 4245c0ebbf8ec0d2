"""Tests for tools.build_commands."""

from pathlib import Path

import pytest

from extensions.recipes import ExtensionRecipe
from extensions.runtime import TargetRuntime
from tools.build_commands import (
    BuildCommand,
    configure_command,
    hook_command,
    make_command,
    merge_configure_options,
    phpize_command,
)

RUNTIME = TargetRuntime(version="8.1", root=Path("/opt/php/8.1"))
SOURCE = Path("/build/apcu-5.1.23")


class TestMergeConfigureOptions:

    def test_override_replaces_default_in_place(self):
        merged = merge_configure_options(
            ["--enable-apcu", "--with-libdir=lib", "--enable-debug"],
            ["--with-libdir=lib64"],
        )
        assert merged == ["--enable-apcu", "--with-libdir=lib64", "--enable-debug"]

    def test_new_options_are_appended(self):
        assert merge_configure_options(["--enable-a"], ["--enable-b", "--enable-c"]) == [
            "--enable-a",
            "--enable-b",
            "--enable-c",
        ]

    def test_disable_switches_off_default(self):
        merged = merge_configure_options(["--enable-sockets", "--with-openssl"], ["--disable-sockets", "--without-openssl"])
        assert merged == ["--disable-sockets", "--without-openssl"]

    def test_no_overrides(self):
        assert merge_configure_options(("--enable-x",), ()) == ["--enable-x"]


class TestCommands:

    def test_configure_pins_runtime_php_config(self):
        recipe = ExtensionRecipe(name="redis", configure_options=("--enable-redis",))

        command = configure_command(
            RUNTIME, SOURCE, recipe, ["--with-php-config=/usr/bin/php-config", "--enable-redis-igbinary"]
        )

        assert command.argv == [
            "./configure",
            "--with-php-config=/opt/php/8.1/bin/php-config",
            "--enable-redis",
            "--enable-redis-igbinary",
        ]
        assert command.cwd == SOURCE
        assert command.stage == "configure"

    def test_configure_env_merges_recipe_env(self):
        recipe = ExtensionRecipe(name="x", env={"CFLAGS": "-O2"})
        command = configure_command(RUNTIME, SOURCE, recipe, env={"CC": "clang"})
        assert dict(command.env) == {"CFLAGS": "-O2", "CC": "clang"}

    def test_phpize(self):
        command = phpize_command(RUNTIME, SOURCE)
        assert command.argv == ["/opt/php/8.1/bin/phpize"]

    def test_make_jobs(self):
        assert make_command(SOURCE, jobs=4).argv == ["make", "-j4"]
        assert make_command(SOURCE, jobs=0, target="install").argv == ["make", "-j1", "install"]

    def test_hook_exports_runtime_paths(self):
        command = hook_command(["./autogen.sh"], SOURCE, "configure", RUNTIME)
        assert command.env["PHPIZE"] == "/opt/php/8.1/bin/phpize"
        assert command.env["PHP_EXTENSION_DIR"] == "/opt/php/8.1/lib/php/extensions"

    def test_empty_hook(self):
        with pytest.raises(ValueError):
            hook_command([], SOURCE, "build", RUNTIME)


class TestRender:

    def test_render_reproduces_command(self):
        command = BuildCommand(
            program="./configure",
            args=("--with-php-config=/opt/php 8.1/bin/php-config",),
            cwd=Path("/build/src"),
            env={"CFLAGS": "-O2 -g"},
        )
        assert command.render() == (
            "cd /build/src && CFLAGS='-O2 -g' ./configure "
            "'--with-php-config=/opt/php 8.1/bin/php-config'"
        )

    def test_full_env_inherits_environment(self, monkeypatch):
        monkeypatch.setenv("PHPEXT_TEST_VAR", "inherited")
        env = BuildCommand(program="make", env={"CC": "gcc"}).full_env()
        assert env["PHPEXT_TEST_VAR"] == "inherited"
        assert env["CC"] == "gcc"
