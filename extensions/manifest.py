"""Runtime extension manifest.

The manifest is the runtime's ordered list of registered extensions,
persisted as YAML (``var/db/extensions.yaml``). Each enabled entry also has
an ini file in the runtime's scan dir so PHP loads it.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from extensions.errors import ManifestError

DISABLED_SUFFIX = ".disabled"


@dataclass
class ManifestEntry:
    """One registered extension.

    Attributes:
        name: Extension name (lowercase, unique within a manifest).
        version: Installed upstream version.
        artifact: Absolute path of the installed shared object.
        zend: Loaded with ``zend_extension=``.
        provider: Provider kind the sources came from.
        enabled: Whether the ini file is active.
        installed_at: ISO timestamp of the last install.
        ini_settings: Extra directives written to the ini file.
    """

    name: str
    version: str
    artifact: str
    zend: bool = False
    provider: str = "pecl"
    enabled: bool = True
    installed_at: str = ""
    ini_settings: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ManifestError("Manifest entry name is required")
        self.name = self.name.lower()
        if not self.installed_at:
            self.installed_at = datetime.now(timezone.utc).isoformat()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManifestEntry:
        try:
            return cls(
                name=data["name"],
                version=str(data.get("version", "")),
                artifact=data.get("artifact", ""),
                zend=bool(data.get("zend", False)),
                provider=data.get("provider", "pecl"),
                enabled=bool(data.get("enabled", True)),
                installed_at=data.get("installed_at", ""),
                ini_settings=dict(data.get("ini_settings") or {}),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ManifestError(f"Invalid manifest entry: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "artifact": self.artifact,
            "provider": self.provider,
            "enabled": self.enabled,
            "installed_at": self.installed_at,
        }
        if self.zend:
            result["zend"] = True
        if self.ini_settings:
            result["ini_settings"] = self.ini_settings
        return result

    def ini_content(self) -> str:
        """Text of this entry's ini file."""
        directive = "zend_extension" if self.zend else "extension"
        lines = [f"{directive}={self.artifact}"]
        lines.extend(f"{key}={value}" for key, value in self.ini_settings.items())
        return "\n".join(lines) + "\n"


class ExtensionManifest:
    """Ordered, persisted list of a runtime's registered extensions.

    Example:
        >>> manifest = ExtensionManifest.load(runtime.manifest_path)
        >>> manifest.upsert(ManifestEntry(name="apcu", version="5.1.23", artifact=so))
        >>> manifest.save()
    """

    def __init__(self, path: Path, entries: list[ManifestEntry] | None = None) -> None:
        self.path = Path(path)
        self.entries: list[ManifestEntry] = list(entries or [])

    @classmethod
    def load(cls, path: Path) -> ExtensionManifest:
        """Load a manifest; a missing file is an empty manifest.

        Raises:
            ManifestError: If the file exists but is not a valid manifest.
        """
        path = Path(path)
        if not path.exists():
            return cls(path)

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML in {path}: {e}") from e
        except OSError as e:
            raise ManifestError(f"Cannot read {path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("entries", []), list):
            raise ManifestError(f"Manifest must be a mapping with an 'entries' list: {path}")

        return cls(path, [ManifestEntry.from_dict(e) for e in data.get("entries", [])])

    def save(self) -> None:
        """Write the manifest atomically (temp file + rename).

        Raises:
            ManifestError: If the file cannot be written.
        """
        data = {"entries": [e.to_dict() for e in self.entries]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".manifest-", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise ManifestError(f"Cannot write {self.path}: {e}") from e

    def get(self, name: str) -> ManifestEntry | None:
        name = name.lower()
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def upsert(self, entry: ManifestEntry) -> bool:
        """Add an entry or replace the existing one in place.

        Returns:
            True if an existing entry was replaced.
        """
        for index, existing in enumerate(self.entries):
            if existing.name == entry.name:
                self.entries[index] = entry
                return True
        self.entries.append(entry)
        return False

    def remove(self, name: str) -> ManifestEntry | None:
        entry = self.get(name)
        if entry is not None:
            self.entries.remove(entry)
        return entry

    def set_enabled(self, name: str, enabled: bool) -> ManifestEntry | None:
        """Flip an entry's enabled flag. Returns None if not registered."""
        entry = self.get(name)
        if entry is not None:
            entry.enabled = enabled
        return entry

    def names(self) -> list[str]:
        return [e.name for e in self.entries]

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        return len(self.entries)

    def __repr__(self) -> str:
        return f"ExtensionManifest(path={str(self.path)!r}, entries={self.names()!r})"


def write_ini(entry: ManifestEntry, ini_path: Path) -> Path:
    """Write (or disable) the ini file for an entry.

    Enabled entries live at ``<name>.ini``; disabled ones are renamed to
    ``<name>.ini.disabled`` so the runtime skips them.

    Returns:
        Path of the file that now holds the entry's directives.
    """
    disabled_path = ini_path.with_name(ini_path.name + DISABLED_SUFFIX)
    target = ini_path if entry.enabled else disabled_path
    stale = disabled_path if entry.enabled else ini_path

    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".ini-", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(entry.ini_content())
        os.replace(tmp, target)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    stale.unlink(missing_ok=True)
    return target


def remove_ini(ini_path: Path) -> None:
    ini_path.unlink(missing_ok=True)
    ini_path.with_name(ini_path.name + DISABLED_SUFFIX).unlink(missing_ok=True)
