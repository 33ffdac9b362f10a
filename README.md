# silentcast

Building blocks for a keyboard-driven launcher. The package uses only the
Python standard library.

## Modules

- `silentcast.logger` is a levelled logger (`Level`: DEBUG, INFO, WARN, ERROR,
  FATAL). `create_logger(LogConfig(...))` builds a logger that writes to a
  size-rotated log file, to stderr, or to both. The file can have optional
  backup pruning and gzip compression. `Logger` also accepts any writers you
  pass. Each record holds a timestamp, the level, the caller's `file:line`,
  and an optional `[prefix]`. The module also keeps a process-wide default
  logger with `initialize`, `debug`, `info`, `warn`, `error`, `fatal` and
  `close`. `fatal` logs the message and then raises `SystemExit(1)`.
- `silentcast.notify` provides `Notification` and the `Level` values INFO,
  WARNING, ERROR and SUCCESS. `ConsoleNotifier` writes notifications to
  stderr, and colours them when stderr is a terminal. `Manager` starts with a
  console notifier and accepts more through `add_notifier`. It sends each
  notification to every notifier. If any notifier fails, it re-raises the
  last failure after trying all of them.
- `silentcast.stats` has `Collector`, which records launches, spell casts
  (with success rate and average run time in ms) and hotkey use, broken down
  by day. It is thread-safe. `get_top_spells`, `get_statistics` and
  `generate_report` give access to the data. `save` writes the data to a JSON
  file atomically. `load` reads it back. `start` saves in the background at
  the configured interval, and `stop` ends that with a final save. The
  default interval is 5 minutes.
- `silentcast.permission` covers the permission types `PermissionType`
  (accessibility, notification, autostart). It has one manager for each
  system: `MacManager`, `WindowsManager`, `LinuxManager` and `StubManager`.
  `new_manager()` picks the right one. `check`, `get_instructions` and
  `is_supported` work on every system. `open_settings` starts the system's
  settings program on macOS and Windows. A failure raises
  `PermissionRequestError`.
- `silentcast.updater` has `Updater`, which reads the latest release from a
  releases API (`UpdaterConfig.api_url`) and compares version strings
  (`is_newer_version`). It then picks the binary asset for the platform
  (`current_platform()`, e.g. `linux-amd64`) and downloads it. `apply_update`
  backs up the running executable and replaces it. `PosixPlatformUpdater` and
  `WindowsPlatformUpdater` handle the platform-specific steps. A failure
  raises `UpdateError`.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Examples

```python
from silentcast.logger import LogConfig, initialize, info, close

initialize(LogConfig(level="debug", file="logs/app.log", console=True))
info("started with %d spells", 3)
close()
```

```python
from silentcast.notify import Manager

Manager().success("Done", "Spell cast")
```

```python
from datetime import timedelta
from silentcast.stats import Collector, StatsConfig

collector = Collector(StatsConfig(enabled=True, data_file="stats.json"))
collector.record_spell_cast("editor", True, timedelta(milliseconds=120))
print(collector.generate_report())
collector.save()
```

```python
from silentcast.permission import new_manager

for perm in new_manager().check():
    print(perm.type.value, perm.status.value)
```

```python
from silentcast.updater import Updater, UpdaterConfig

updater = Updater(UpdaterConfig(current_version="v1.0.0",
                                repo_owner="example", repo_name="app"))
print(updater.is_newer_version("v1.1.0"))  # True
```

## What it does not do

- There is no command-line program, and nothing here listens for hotkeys or
  runs spells. The package is a library for an application that does those
  things.
- There is no system tray and no desktop notifications. `ConsoleNotifier` is
  the only notifier included.
- Permission states on macOS, and the accessibility and autostart states on
  Windows, are reported as `not_determined`. Requesting auto-start or admin
  rights raises `PermissionRequestError` because these are not implemented.
- `check_for_update` does not read checksum files from a release, so the
  `checksum` of an `UpdateInfo` is empty unless you set it. A download is
  checked against it only when it is set.
- The statistics report ends with a "Recent Daily Usage:" heading and lists
  nothing under it.