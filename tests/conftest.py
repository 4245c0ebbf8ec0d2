"""Shared pytest fixtures for the phpext test suite.

Provides an isolated config rooted in tmp_path, a fake PHP runtime whose
build tools are small shell scripts, in-memory source tarballs and an
httpx MockTransport standing in for PECL/GitHub.
"""

import io
import os
import sys
import tarfile
from pathlib import Path

import httpx
import pytest

# Ensure project root is on sys.path
BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from extensions.runtime import TargetRuntime
from pipeline.config import (
    BuildConfig,
    Config,
    FetchConfig,
    PathsConfig,
    ProvidersConfig,
)

PECL_URL = "https://pecl.test"
GITHUB_API_URL = "https://api.github.test"
GITHUB_URL = "https://github.test"


# ---------------------------------------------------------------------------
# Source tarballs
# ---------------------------------------------------------------------------
CONFIG_M4 = "PHP_ARG_ENABLE(demo, whether to enable demo, [--enable-demo])\n"

# ./configure records its arguments; fails unless LIBDEMO is set when asked to
CONFIGURE_SCRIPT = """#!/bin/sh
echo "checking for PHP extension API... ok"
echo "$@" > configure.args
if [ -n "$REQUIRE_LIBDEMO" ] && [ -z "$LIBDEMO" ]; then
    echo "configure: error: libdemo headers not found" >&2
    exit 1
fi
echo "creating Makefile"
"""

# Run by the fake `make`: produces modules/<name>.so
BUILD_SCRIPT = """#!/bin/sh
echo "compiling {name}.c"
{body}
mkdir -p modules
echo "built {name} {version}" > modules/{name}.so
"""


def make_tarball(files: dict[str, str], executable: tuple[str, ...] = ()) -> bytes:
    """Build a .tgz in memory from a {path: text} mapping."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, text in files.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755 if name.rsplit("/", 1)[-1] in executable else 0o644
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def extension_tarball(
    name: str = "apcu",
    version: str = "5.1.23",
    top_dir: str | None = None,
    build_body: str = "",
    artifact: str | None = None,
) -> bytes:
    """PECL-style tarball: package.xml next to <Name>-<version>/ sources."""
    top = top_dir or f"{name}-{version}"
    build = BUILD_SCRIPT.format(name=artifact or name, version=version, body=build_body)
    return make_tarball(
        {
            "package.xml": f"<package><name>{name}</name></package>\n",
            f"{top}/config.m4": CONFIG_M4,
            f"{top}/configure": CONFIGURE_SCRIPT,
            f"{top}/build.sh": build,
            f"{top}/{name}.c": "/* demo */\n",
        },
        executable=("configure", "build.sh"),
    )


# ---------------------------------------------------------------------------
# Fake upstream
# ---------------------------------------------------------------------------
class FakeUpstream:
    """Route table served through httpx.MockTransport.

    A route may be a list of responses, consumed in order (the last one
    repeats), to simulate transient failures.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url: str,
        content: bytes | str = b"",
        status: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        if isinstance(content, str):
            content = content.encode("utf-8")
        self.routes.setdefault(url, []).append(
            httpx.Response(status, content=content, headers=headers)
        )

    def add_json(self, url: str, data, status: int = 200) -> None:
        self.routes.setdefault(url, []).append(httpx.Response(status, json=data))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?", 1)[0]
        responses = self.routes.get(url)
        if not responses:
            return httpx.Response(404, content=b"not found")
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        return httpx.Response(
            response.status_code,
            content=response.content,
            headers=response.headers,
        )

    def hits(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url).split("?", 1)[0] == url)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def pecl_info(self, package: str) -> str:
        """Publish PECL's package info document; returns its URL."""
        url = f"{PECL_URL}/rest/p/{package.lower()}/info.xml"
        if url not in self.routes:
            self.add(
                url,
                '<?xml version="1.0" encoding="UTF-8" ?>'
                '<p xmlns="http://pear.php.net/dtd/rest.package">'
                f"<n>{package}</n><c>pecl.php.net</c>"
                "</p>",
            )
        return url

    def serve_pecl(
        self,
        package: str,
        version: str,
        archive: bytes,
        channels: tuple[str, ...] = ("latest", "stable"),
    ) -> str:
        """Publish a package on the fake PECL; returns the archive URL."""
        self.pecl_info(package)
        for channel in channels:
            self.add(f"{PECL_URL}/rest/r/{package.lower()}/{channel}.txt", f"{version}\n")
        url = f"{PECL_URL}/get/{package}-{version}.tgz"
        self.add(url, archive)
        return url


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def http_client(upstream):
    client = upstream.client()
    yield client
    client.close()


# ---------------------------------------------------------------------------
# Config and runtime
# ---------------------------------------------------------------------------
@pytest.fixture
def config(tmp_path):
    """Config rooted in tmp_path with instant retry backoff."""
    return Config(
        paths=PathsConfig(home=str(tmp_path / "home")),
        fetch=FetchConfig(retries=3, backoff_min=0, backoff_max=0),
        build=BuildConfig(jobs=2, configure_timeout=30, build_timeout=30),
        providers=ProvidersConfig(
            pecl_url=PECL_URL,
            github_api_url=GITHUB_API_URL,
            github_url=GITHUB_URL,
        ),
    )


def write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_make(tmp_path, monkeypatch):
    """Put a `make` on PATH that runs the source tree's build.sh."""
    bin_dir = tmp_path / "fakebin"
    write_script(bin_dir / "make", '#!/bin/sh\necho "make $@"\nexec sh ./build.sh\n')
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir / "make"


def make_runtime(
    runtimes_dir: Path,
    version: str,
    full_version: str | None = None,
    extension_dir: Path | None = None,
) -> TargetRuntime:
    """Create a runtime tree with stub phpize/php-config."""
    root = runtimes_dir / version
    extension_dir = extension_dir or root / "lib" / "php" / "extensions"
    write_script(root / "bin" / "phpize", '#!/bin/sh\necho "Configuring for:"\necho "PHP Api Version: 20210902"\n')
    write_script(
        root / "bin" / "php-config",
        "#!/bin/sh\n"
        'case "$1" in\n'
        f'  --version) echo "{full_version or version + ".0"}" ;;\n'
        f'  --extension-dir) echo "{extension_dir}" ;;\n'
        "  *) exit 1 ;;\n"
        "esac\n",
    )
    write_script(root / "bin" / "php", "#!/bin/sh\nexit 0\n")
    (root / "include" / "php").mkdir(parents=True)
    extension_dir.mkdir(parents=True, exist_ok=True)
    (root / "var" / "db").mkdir(parents=True)
    return TargetRuntime(version=version, root=root, extension_dir=extension_dir)


@pytest.fixture
def runtime(config, fake_make):
    return make_runtime(config.paths.runtimes_path, "8.1")
