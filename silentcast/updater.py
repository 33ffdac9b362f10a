"""Self-update: find newer releases, download them and swap the executable."""

from __future__ import annotations

import contextlib
import hashlib
import json
import os
import platform as _host
import re
import shutil
import sys
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from . import logger

APP_NAME = "silentcast"
DEFAULT_API_URL = "https://api.github.com"
_DEFAULT_CHECK_INTERVAL = timedelta(hours=24)
_HTTP_TIMEOUT = 30.0
_CHUNK = 64 * 1024
_OLD_EXECUTABLE_GRACE = 5.0
_ARCHIVE_SUFFIXES = (".tar.gz", ".zip")
_INTEGER = re.compile(r"[+-]?\d+")

_OS_NAMES = {"darwin": "darwin", "win32": "windows", "cygwin": "windows"}
_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}


class UpdateError(Exception):
    """Checking for, downloading or applying an update failed."""


def _parse_time(value) -> datetime | None:
    if not value:
        return None
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = re.sub(r"\.(\d+)", lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    return datetime.fromisoformat(text)


@dataclass
class UpdaterConfig:
    """Settings for :class:`Updater`."""

    current_version: str = ""
    repo_owner: str = ""
    repo_name: str = ""
    check_interval: timedelta = timedelta(0)
    auto_update: bool = False
    api_url: str = DEFAULT_API_URL
    platform: str | None = None
    executable: str | None = None
    initial_delay: timedelta = timedelta(minutes=1)


@dataclass
class Asset:
    """A downloadable file attached to a release."""

    name: str = ""
    size: int = 0
    download_url: str = ""
    content_type: str = ""

    @classmethod
    def from_dict(cls, data) -> Asset:
        if not isinstance(data, dict):
            raise ValueError("asset must be a JSON object")
        return cls(
            name=data.get("name") or "",
            size=int(data.get("size") or 0),
            download_url=data.get("browser_download_url") or "",
            content_type=data.get("content_type") or "",
        )


@dataclass
class Release:
    """A published release."""

    tag_name: str = ""
    name: str = ""
    body: str = ""
    prerelease: bool = False
    draft: bool = False
    published_at: datetime | None = None
    assets: list[Asset] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data) -> Release:
        if not isinstance(data, dict):
            raise ValueError("release must be a JSON object")
        return cls(
            tag_name=data.get("tag_name") or "",
            name=data.get("name") or "",
            body=data.get("body") or "",
            prerelease=bool(data.get("prerelease", False)),
            draft=bool(data.get("draft", False)),
            published_at=_parse_time(data.get("published_at")),
            assets=[Asset.from_dict(item) for item in data.get("assets") or []],
        )


@dataclass
class UpdateInfo:
    """An update that is available for this platform."""

    version: str
    release_notes: str
    published_at: datetime | None
    download_url: str
    size: int
    checksum: str = ""


class PlatformUpdater(ABC):
    """Platform-specific steps of installing an update."""

    @abstractmethod
    def can_replace_running_executable(self) -> bool:
        """Whether a running executable may be replaced in place."""

    @abstractmethod
    def replace_executable(self, src, dst) -> None:
        """Put the file at ``src`` where ``dst`` is."""

    @abstractmethod
    def make_executable(self, path) -> None:
        """Give the file execute permission."""


class PosixPlatformUpdater(PlatformUpdater):
    """Linux and macOS, where a running executable can simply be replaced."""

    def can_replace_running_executable(self) -> bool:
        return True

    def replace_executable(self, src, dst) -> None:
        os.replace(src, dst)

    def make_executable(self, path) -> None:
        os.chmod(path, 0o755)


class WindowsPlatformUpdater(PlatformUpdater):
    """Windows, where the running executable is moved aside first."""

    def can_replace_running_executable(self) -> bool:
        return False

    def replace_executable(self, src, dst) -> None:
        old_path = f"{dst}.old"
        os.rename(dst, old_path)
        try:
            os.rename(src, dst)
        except OSError:
            with contextlib.suppress(OSError):
                os.rename(old_path, dst)
            raise

        def remove_old() -> None:
            with contextlib.suppress(OSError):
                os.remove(old_path)

        timer = threading.Timer(_OLD_EXECUTABLE_GRACE, remove_old)
        timer.daemon = True
        timer.start()

    def make_executable(self, path) -> None:
        return None


def get_platform_updater(platform: str | None = None) -> PlatformUpdater:
    """Return the updater for an OS name (default: the running one)."""
    name = (sys.platform if platform is None else platform).lower()
    if name in ("windows", "win32", "cygwin"):
        return WindowsPlatformUpdater()
    if name == "darwin" or name.startswith("linux"):
        return PosixPlatformUpdater()
    raise UpdateError(f"platform updater not available for {name}")


def current_platform() -> str:
    """Return the running platform as ``<os>-<arch>``, e.g. ``linux-amd64``."""
    name = sys.platform
    if name.startswith("linux"):
        os_name = "linux"
    else:
        os_name = _OS_NAMES.get(name, re.sub(r"\d+$", "", name))
    machine = _host.machine().lower()
    return f"{os_name}-{_ARCH_NAMES.get(machine, machine)}"


class Updater:
    """Checks a release feed for newer versions and installs them."""

    def __init__(self, config: UpdaterConfig):
        self._config = config
        self._check_interval = config.check_interval or _DEFAULT_CHECK_INTERVAL
        self._platform = config.platform or current_platform()
        self._timeout = _HTTP_TIMEOUT

    @property
    def current_version(self) -> str:
        return self._config.current_version

    @property
    def check_interval(self) -> timedelta:
        return self._check_interval

    @property
    def platform(self) -> str:
        return self._platform

    def _platform_updater(self) -> PlatformUpdater:
        return get_platform_updater(self._platform.split("-", 1)[0])

    def check_for_update(self) -> UpdateInfo | None:
        """Return the newer release for this platform, or None when up to date."""
        logger.info("Checking for updates...")
        try:
            release = self._get_latest_release()
        except (UpdateError, OSError, ValueError, TypeError, AttributeError) as exc:
            raise UpdateError(f"failed to get latest release: {exc}") from exc

        if not self.is_newer_version(release.tag_name):
            logger.info("Already running latest version %s", self.current_version)
            return None

        try:
            asset = self.find_platform_asset(release.assets)
        except UpdateError as exc:
            raise UpdateError(f"no suitable update found for platform: {exc}") from exc

        return UpdateInfo(
            version=release.tag_name,
            release_notes=release.body,
            published_at=release.published_at,
            download_url=asset.download_url,
            size=asset.size,
            checksum=self._find_checksum(release.assets, asset.name),
        )

    def download_update(self, info: UpdateInfo) -> str:
        """Download the update to a temporary file and return its path."""
        logger.info("Downloading update %s...", info.version)
        target = Path(tempfile.gettempdir()) / f"{APP_NAME}-update-{info.version}"

        try:
            out = open(target, "wb")
        except OSError as exc:
            raise UpdateError(f"failed to create temp file: {exc}") from exc
        with out:
            written = self._download_to(info.download_url, out)

        if written != info.size:
            raise UpdateError(
                f"download size mismatch: expected {info.size}, got {written}"
            )

        if info.checksum:
            try:
                self.verify_checksum(target, info.checksum)
            except (UpdateError, OSError) as exc:
                with contextlib.suppress(OSError):
                    target.unlink()
                raise UpdateError(f"checksum verification failed: {exc}") from exc

        try:
            self._platform_updater().make_executable(target)
        except (UpdateError, OSError) as exc:
            raise UpdateError(f"failed to make executable: {exc}") from exc

        logger.info("Update downloaded successfully to %s", target)
        return str(target)

    def apply_update(self, update_path) -> None:
        """Replace the running executable with the file at ``update_path``."""
        logger.info("Applying update...")
        current = self._config.executable or sys.executable
        if not current:
            raise UpdateError("failed to get current executable: path unknown")
        try:
            current = os.path.realpath(current, strict=True)
        except OSError as exc:
            raise UpdateError(f"failed to resolve executable path: {exc}") from exc

        backup = current + ".backup"
        try:
            self.create_backup(current, backup)
        except OSError as exc:
            raise UpdateError(f"failed to create backup: {exc}") from exc

        try:
            self._platform_updater().replace_executable(update_path, current)
        except (UpdateError, OSError) as exc:
            try:
                os.replace(backup, current)
            except OSError as restore_exc:
                logger.error("Failed to restore backup: %s", restore_exc)
            raise UpdateError(f"failed to apply update: {exc}") from exc

        for leftover in (backup, update_path):
            with contextlib.suppress(OSError):
                os.remove(leftover)

        logger.info("Update applied successfully!")

    def start_auto_check(
        self,
        on_update: Callable[[UpdateInfo], None] | None,
        stop_event: threading.Event | None = None,
    ) -> threading.Thread:
        """Check in the background after a delay, then once per interval."""
        stop = stop_event if stop_event is not None else threading.Event()
        delay = self._config.initial_delay.total_seconds()
        interval = self._check_interval.total_seconds()

        def run() -> None:
            if stop.wait(delay):
                return
            self._check_and_notify(on_update)
            while not stop.wait(interval):
                self._check_and_notify(on_update)

        thread = threading.Thread(target=run, name="update-checker", daemon=True)
        thread.start()
        return thread

    def _check_and_notify(self, on_update) -> None:
        try:
            info = self.check_for_update()
        except UpdateError as exc:
            logger.error("Update check failed: %s", exc)
            return
        if info is not None and on_update is not None:
            on_update(info)

    def _get_latest_release(self) -> Release:
        config = self._config
        url = (f"{config.api_url.rstrip('/')}/repos/"
               f"{config.repo_owner}/{config.repo_name}/releases/latest")
        request = Request(url, headers={"Accept": "application/vnd.github.v3+json"})
        try:
            response = urlopen(request, timeout=self._timeout)
        except HTTPError as exc:
            raise UpdateError(f"GitHub API returned status: {exc.code} {exc.reason}") from exc
        with response:
            if response.status != 200:
                raise UpdateError(
                    f"GitHub API returned status: {response.status} {response.reason}"
                )
            data = json.load(response)
        return Release.from_dict(data)

    def _download_to(self, url: str, out) -> int:
        try:
            response = urlopen(Request(url), timeout=self._timeout)
        except HTTPError as exc:
            raise UpdateError(f"download failed with status: {exc.code} {exc.reason}") from exc
        except (OSError, ValueError) as exc:
            raise UpdateError(f"failed to download: {exc}") from exc

        with response:
            if response.status != 200:
                raise UpdateError(
                    f"download failed with status: {response.status} {response.reason}"
                )
            written = 0
            try:
                for chunk in iter(lambda: response.read(_CHUNK), b""):
                    out.write(chunk)
                    written += len(chunk)
            except OSError as exc:
                raise UpdateError(f"failed to save update: {exc}") from exc
        return written

    def is_newer_version(self, new_version: str) -> bool:
        """Whether ``new_version`` is newer than the running version."""
        if self.current_version == "dev" or new_version == "dev":
            return False

        current_parts = self.current_version.removeprefix("v").split(".")
        new_parts = new_version.removeprefix("v").split(".")

        for current, newer in zip(current_parts, new_parts):
            if _INTEGER.fullmatch(current) and _INTEGER.fullmatch(newer):
                current_key, newer_key = int(current), int(newer)
                if newer_key != current_key:
                    return newer_key > current_key
            elif newer != current:
                return newer > current

        return len(new_parts) > len(current_parts)

    def find_platform_asset(self, assets) -> Asset:
        """Return the first non-archive asset whose name names this platform."""
        for asset in assets:
            name = asset.name.lower()
            if self._platform in name and not name.endswith(_ARCHIVE_SUFFIXES):
                return asset
        raise UpdateError(f"no asset found for platform {self._platform}")

    def _find_checksum(self, assets, asset_name: str) -> str:
        # Checksum files are recognised but not yet parsed.
        return ""

    def verify_checksum(self, file_path, expected_checksum: str) -> None:
        """Raise :class:`UpdateError` unless the file's SHA-256 matches."""
        digest = hashlib.sha256()
        with open(file_path, "rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK), b""):
                digest.update(chunk)
        actual = digest.hexdigest()
        if actual != expected_checksum:
            raise UpdateError(
                f"checksum mismatch: expected {expected_checksum}, got {actual}"
            )

    def create_backup(self, src, dst) -> None:
        """Copy ``src`` to ``dst``, keeping its permission bits."""
        shutil.copyfile(src, dst)
        shutil.copymode(src, dst)