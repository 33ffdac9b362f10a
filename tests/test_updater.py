import json
import os
import platform
import sys
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from silentcast.updater import (
    Asset,
    PosixPlatformUpdater,
    Release,
    UpdateError,
    UpdateInfo,
    Updater,
    UpdaterConfig,
    WindowsPlatformUpdater,
    current_platform,
    get_platform_updater,
)

ABC_SHA256 = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
RELEASE_PATH = "/repos/test/repo/releases/latest"


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.server.seen_headers.append(dict(self.headers))
        status, body = self.server.routes.get(self.path, (404, b"not found"))
        self.send_response(status)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.routes = {}
    httpd.seen_headers = []
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}", httpd
    httpd.shutdown()
    httpd.server_close()


def make_updater(api_url="http://127.0.0.1:1", **overrides):
    settings = dict(
        current_version="v1.0.0",
        repo_owner="test",
        repo_name="repo",
        api_url=api_url,
        platform="linux-amd64",
    )
    settings.update(overrides)
    return Updater(UpdaterConfig(**settings))


def release_body(base, tag="v2.0.0", assets=None):
    if assets is None:
        assets = [{
            "name": "spellbook-linux-amd64",
            "size": 3,
            "browser_download_url": f"{base}/download/bin",
            "content_type": "application/octet-stream",
        }]
    return json.dumps({
        "tag_name": tag,
        "name": f"Release {tag}",
        "body": "New features",
        "published_at": "2024-05-01T12:00:00Z",
        "assets": assets,
    }).encode()


def test_new_updater_keeps_config():
    updater = Updater(UpdaterConfig(current_version="v1.0.0", repo_owner="test",
                                    repo_name="repo", check_interval=timedelta(hours=1)))
    assert updater.current_version == "v1.0.0"
    assert updater.check_interval == timedelta(hours=1)


def test_new_updater_default_interval():
    assert Updater(UpdaterConfig()).check_interval == timedelta(hours=24)


@pytest.mark.parametrize(
    "current, new, expected",
    [
        ("v1.0.0", "v1.1.0", True),
        ("v1.1.0", "v1.0.0", False),
        ("v1.0.0", "v1.0.0", False),
        ("1.0.0", "1.1.0", True),
        ("v1.0.0", "1.1.0", True),
        ("dev", "v1.0.0", False),
        ("v1.0.0", "dev", False),
        ("v1.0.0", "v2.0.0", True),
        ("v1.9.0", "v1.10.0", True),
        ("v1.0", "v1.0.1", True),
        ("v1.0.0-beta", "v1.0.0-rc", True),
    ],
)
def test_is_newer_version(current, new, expected):
    assert make_updater(current_version=current).is_newer_version(new) is expected


ASSETS = [
    Asset(name="spellbook-darwin-amd64", size=1100),
    Asset(name="spellbook-darwin-arm64", size=1200),
    Asset(name="spellbook-windows-amd64.exe", size=1300),
    Asset(name="spellbook-linux-amd64", size=1400),
    Asset(name="spellbook-linux-arm64", size=1500),
    Asset(name="checksums.txt", size=100),
]


@pytest.mark.parametrize(
    "target, name, size",
    [
        ("linux-amd64", "spellbook-linux-amd64", 1400),
        ("darwin-arm64", "spellbook-darwin-arm64", 1200),
        ("windows-amd64", "spellbook-windows-amd64.exe", 1300),
    ],
)
def test_find_platform_asset(target, name, size):
    asset = make_updater(platform=target).find_platform_asset(ASSETS)
    assert (asset.name, asset.size) == (name, size)


def test_find_platform_asset_no_match():
    assets = [Asset(name="spellbook-freebsd-amd64", size=1000),
              Asset(name="checksums.txt", size=100)]
    with pytest.raises(UpdateError, match="no asset found for platform linux-amd64"):
        make_updater().find_platform_asset(assets)


def test_find_platform_asset_skips_archives_and_ignores_case():
    assets = [Asset(name="app-linux-amd64.tar.gz"), Asset(name="app-linux-amd64.zip"),
              Asset(name="App-Linux-AMD64")]
    assert make_updater().find_platform_asset(assets).name == "App-Linux-AMD64"


def test_release_from_dict():
    release = Release.from_dict(json.loads(release_body("http://host")))
    assert release.tag_name == "v2.0.0"
    assert release.body == "New features"
    assert release.published_at == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    assert release.assets[0].download_url == "http://host/download/bin"
    assert release.assets[0].size == 3


def test_check_for_update(server):
    base, httpd = server
    httpd.routes[RELEASE_PATH] = (200, release_body(base))
    info = make_updater(base).check_for_update()
    assert info.version == "v2.0.0"
    assert info.release_notes == "New features"
    assert info.download_url == f"{base}/download/bin"
    assert info.size == 3
    assert info.checksum == ""
    assert httpd.seen_headers[0]["Accept"] == "application/vnd.github.v3+json"


def test_check_for_update_when_current(server):
    base, httpd = server
    httpd.routes[RELEASE_PATH] = (200, release_body(base, tag="v1.0.0"))
    assert make_updater(base).check_for_update() is None


def test_check_for_update_without_platform_asset(server):
    base, httpd = server
    httpd.routes[RELEASE_PATH] = (200, release_body(base, assets=[]))
    with pytest.raises(UpdateError, match="no suitable update found"):
        make_updater(base).check_for_update()


def test_check_for_update_api_error(server):
    base, _ = server
    with pytest.raises(UpdateError, match="failed to get latest release.*404"):
        make_updater(base).check_for_update()


@pytest.fixture
def temp_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    return tmp_path


def test_download_update(server, temp_dir):
    base, httpd = server
    httpd.routes["/download/bin"] = (200, b"abc")
    info = UpdateInfo("v2.0.0", "", None, f"{base}/download/bin", 3, ABC_SHA256)
    path = make_updater(base).download_update(info)
    assert Path(path) == temp_dir / "silentcast-update-v2.0.0"
    assert Path(path).read_bytes() == b"abc"


def test_download_update_size_mismatch(server, temp_dir):
    base, httpd = server
    httpd.routes["/download/bin"] = (200, b"abc")
    info = UpdateInfo("v2.0.0", "", None, f"{base}/download/bin", 10)
    with pytest.raises(UpdateError, match="expected 10, got 3"):
        make_updater(base).download_update(info)


def test_download_update_bad_checksum_removes_file(server, temp_dir):
    base, httpd = server
    httpd.routes["/download/bin"] = (200, b"abc")
    info = UpdateInfo("v2.0.0", "", None, f"{base}/download/bin", 3, "0" * 64)
    with pytest.raises(UpdateError, match="checksum verification failed"):
        make_updater(base).download_update(info)
    assert not (temp_dir / "silentcast-update-v2.0.0").exists()


def test_download_update_http_error(server, temp_dir):
    base, _ = server
    info = UpdateInfo("v2.0.0", "", None, f"{base}/missing", 3)
    with pytest.raises(UpdateError, match="download failed with status: 404"):
        make_updater(base).download_update(info)


def test_verify_checksum_mismatch(tmp_path):
    target = tmp_path / "test.bin"
    target.write_bytes(b"abc")
    wrong = "8b3d6c91e8f0c6e9d8a7f9e1c2b4a6d8e5f7a9b1c3d5e7f9"
    with pytest.raises(UpdateError) as excinfo:
        make_updater().verify_checksum(target, wrong)
    assert ABC_SHA256 in str(excinfo.value)
    assert wrong in str(excinfo.value)


def test_create_backup(tmp_path):
    src = tmp_path / "source"
    src.write_bytes(b"test content")
    os.chmod(src, 0o755)
    dst = tmp_path / "backup"
    make_updater().create_backup(src, dst)
    assert dst.read_bytes() == b"test content"
    assert os.stat(dst).st_mode == os.stat(src).st_mode


def test_apply_update(tmp_path):
    exe = tmp_path / "app"
    exe.write_bytes(b"old")
    update = tmp_path / "app-new"
    update.write_bytes(b"new")
    make_updater(executable=str(exe)).apply_update(str(update))
    assert exe.read_bytes() == b"new"
    assert not update.exists()
    assert not (tmp_path / "app.backup").exists()


def test_apply_update_failure_restores(tmp_path):
    exe = tmp_path / "app"
    exe.write_bytes(b"old")
    with pytest.raises(UpdateError, match="failed to apply update"):
        make_updater(executable=str(exe)).apply_update(str(tmp_path / "missing"))
    assert exe.read_bytes() == b"old"
    assert not (tmp_path / "app.backup").exists()


def test_posix_replace_executable(tmp_path):
    src, dst = tmp_path / "src", tmp_path / "dst"
    src.write_bytes(b"new")
    dst.write_bytes(b"old")
    updater = PosixPlatformUpdater()
    updater.replace_executable(src, dst)
    assert dst.read_bytes() == b"new"
    assert not src.exists()
    assert updater.can_replace_running_executable() is True


def test_windows_replace_executable_moves_old_aside(tmp_path):
    src, dst = tmp_path / "src", tmp_path / "dst"
    src.write_bytes(b"new")
    dst.write_bytes(b"old")
    updater = WindowsPlatformUpdater()
    updater.replace_executable(str(src), str(dst))
    assert dst.read_bytes() == b"new"
    assert (tmp_path / "dst.old").read_bytes() == b"old"
    assert updater.can_replace_running_executable() is False


def test_windows_replace_executable_restores_on_failure(tmp_path):
    dst = tmp_path / "dst"
    dst.write_bytes(b"old")
    with pytest.raises(OSError):
        WindowsPlatformUpdater().replace_executable(str(tmp_path / "missing"), str(dst))
    assert dst.read_bytes() == b"old"


@pytest.mark.parametrize(
    "name, can_replace",
    [("windows", False), ("win32", False), ("darwin", True), ("linux", True)],
)
def test_get_platform_updater(name, can_replace):
    assert get_platform_updater(name).can_replace_running_executable() is can_replace


def test_get_platform_updater_unknown():
    with pytest.raises(UpdateError, match="freebsd"):
        get_platform_updater("freebsd")


@pytest.mark.parametrize(
    "sys_platform, machine, expected",
    [
        ("linux", "x86_64", "linux-amd64"),
        ("darwin", "arm64", "darwin-arm64"),
        ("win32", "AMD64", "windows-amd64"),
        ("linux", "aarch64", "linux-arm64"),
    ],
)
def test_current_platform(monkeypatch, sys_platform, machine, expected):
    monkeypatch.setattr(sys, "platform", sys_platform)
    monkeypatch.setattr(platform, "machine", lambda: machine)
    assert current_platform() == expected


def test_start_auto_check_reports_update(server):
    base, httpd = server
    httpd.routes[RELEASE_PATH] = (200, release_body(base))
    found = []
    seen = threading.Event()

    def on_update(info):
        found.append(info)
        seen.set()

    stop = threading.Event()
    updater = make_updater(base, initial_delay=timedelta(0))
    thread = updater.start_auto_check(on_update, stop)
    assert seen.wait(5)
    stop.set()
    thread.join(5)
    assert found[0].version == "v2.0.0"
    assert not thread.is_alive()


def test_start_auto_check_stopped_before_first_check():
    calls = []
    stop = threading.Event()
    stop.set()
    thread = make_updater().start_auto_check(calls.append, stop)
    thread.join(5)
    assert not thread.is_alive()
    assert calls == []