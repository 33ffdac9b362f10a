"""Usage statistics, kept in memory and saved periodically to a JSON file."""

from __future__ import annotations

import copy
import json
import os
import re
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path

from . import logger

_ZERO_TIME = "0001-01-01T00:00:00Z"
_DEFAULT_SAVE_INTERVAL = timedelta(minutes=5)
_FRACTION = re.compile(r"\.(\d+)")


def _now() -> datetime:
    return datetime.now().astimezone()


def _format_time(value: datetime | None) -> str:
    return _ZERO_TIME if value is None else value.isoformat()


def _parse_time(value) -> datetime | None:
    if not value or value.startswith("0001-01-01"):
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    value = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], value, count=1)
    return datetime.fromisoformat(value)


@dataclass
class SpellStat:
    """Counts and timings for one spell."""

    name: str
    cast_count: int = 0
    last_cast: datetime | None = None
    success_rate: float = 0.0
    avg_exec_time: float = 0.0

    def _to_dict(self) -> dict:
        return {
            "name": self.name,
            "cast_count": self.cast_count,
            "last_cast": _format_time(self.last_cast),
            "success_rate": self.success_rate,
            "avg_exec_time_ms": self.avg_exec_time,
        }

    @classmethod
    def _from_dict(cls, data: dict) -> SpellStat:
        return cls(
            name=data.get("name", ""),
            cast_count=int(data.get("cast_count", 0)),
            last_cast=_parse_time(data.get("last_cast")),
            success_rate=float(data.get("success_rate", 0.0)),
            avg_exec_time=float(data.get("avg_exec_time_ms", 0.0)),
        )


@dataclass
class HotkeyStat:
    """Use count for one hotkey sequence."""

    sequence: str
    use_count: int = 0
    last_used: datetime | None = None

    def _to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "use_count": self.use_count,
            "last_used": _format_time(self.last_used),
        }

    @classmethod
    def _from_dict(cls, data: dict) -> HotkeyStat:
        return cls(
            sequence=data.get("sequence", ""),
            use_count=int(data.get("use_count", 0)),
            last_used=_parse_time(data.get("last_used")),
        )


@dataclass
class DailyUsage:
    """Activity on one calendar day."""

    date: str
    launches: int = 0
    spells_cast: int = 0
    active_time: int = 0

    def _to_dict(self) -> dict:
        return {
            "date": self.date,
            "launches": self.launches,
            "spells_cast": self.spells_cast,
            "active_time_minutes": self.active_time,
        }

    @classmethod
    def _from_dict(cls, data: dict) -> DailyUsage:
        return cls(
            date=data.get("date", ""),
            launches=int(data.get("launches", 0)),
            spells_cast=int(data.get("spells_cast", 0)),
            active_time=int(data.get("active_time_minutes", 0)),
        )


@dataclass
class Statistics:
    """All collected usage data."""

    version: str = ""
    install_date: datetime | None = None
    last_used: datetime | None = None
    total_launches: int = 0
    total_spells_cast: int = 0
    spell_stats: dict[str, SpellStat] = field(default_factory=dict)
    hotkey_stats: dict[str, HotkeyStat] = field(default_factory=dict)
    daily_usage: dict[str, DailyUsage] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "install_date": _format_time(self.install_date),
            "last_used": _format_time(self.last_used),
            "total_launches": self.total_launches,
            "total_spells_cast": self.total_spells_cast,
            "spell_stats": {k: v._to_dict() for k, v in self.spell_stats.items()},
            "hotkey_stats": {k: v._to_dict() for k, v in self.hotkey_stats.items()},
            "daily_usage": {k: v._to_dict() for k, v in self.daily_usage.items()},
        }

    @classmethod
    def from_dict(cls, data) -> Statistics:
        if not isinstance(data, dict):
            raise ValueError("statistics data must be a JSON object")
        return cls(
            version=data.get("version", ""),
            install_date=_parse_time(data.get("install_date")),
            last_used=_parse_time(data.get("last_used")),
            total_launches=int(data.get("total_launches", 0)),
            total_spells_cast=int(data.get("total_spells_cast", 0)),
            spell_stats={k: SpellStat._from_dict(v)
                         for k, v in (data.get("spell_stats") or {}).items()},
            hotkey_stats={k: HotkeyStat._from_dict(v)
                          for k, v in (data.get("hotkey_stats") or {}).items()},
            daily_usage={k: DailyUsage._from_dict(v)
                         for k, v in (data.get("daily_usage") or {}).items()},
        )


@dataclass
class StatsConfig:
    """Settings for :class:`Collector`."""

    enabled: bool = False
    data_file: str = ""
    save_interval: timedelta = timedelta(0)


class Collector:
    """Thread-safe collector of usage statistics."""

    def __init__(self, config: StatsConfig):
        self._lock = threading.RLock()
        self._enabled = config.enabled
        self._data_file = config.data_file
        self._save_interval = config.save_interval or _DEFAULT_SAVE_INTERVAL
        self._stats = Statistics()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

        try:
            self.load()
        except FileNotFoundError:
            pass
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            logger.warn("Failed to load statistics: %s", exc)

        if self._stats.install_date is None:
            self._stats.install_date = _now()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def data_file(self) -> str:
        return self._data_file

    @property
    def save_interval(self) -> timedelta:
        return self._save_interval

    def start(self) -> None:
        """Record a launch and begin saving periodically in the background."""
        if not self._enabled:
            logger.info("Statistics collection disabled")
            return
        self.record_launch()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop_event,), name="stats-saver", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop background saving after one final save."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join()
        self._thread = None
        self._stop_event = None

    def _run(self, stop: threading.Event) -> None:
        interval = self._save_interval.total_seconds()
        while not stop.wait(interval):
            self.save()
        self.save()

    def _today(self, now: datetime) -> DailyUsage:
        today = now.strftime("%Y-%m-%d")
        return self._stats.daily_usage.setdefault(today, DailyUsage(date=today))

    def record_launch(self) -> None:
        if not self._enabled:
            return
        now = _now()
        with self._lock:
            self._stats.total_launches += 1
            self._stats.last_used = now
            self._today(now).launches += 1

    def record_spell_cast(self, spell: str, success: bool, exec_time: timedelta) -> None:
        if not self._enabled:
            return
        now = _now()
        with self._lock:
            self._stats.total_spells_cast += 1
            stat = self._stats.spell_stats.setdefault(spell, SpellStat(name=spell))
            stat.cast_count += 1
            stat.last_cast = now
            count = stat.cast_count
            outcome = 1.0 if success else 0.0
            stat.success_rate = (stat.success_rate * (count - 1) + outcome) / count
            exec_ms = float(exec_time // timedelta(milliseconds=1))
            stat.avg_exec_time = (stat.avg_exec_time * (count - 1) + exec_ms) / count
            self._today(now).spells_cast += 1

    def record_hotkey_use(self, sequence: str) -> None:
        if not self._enabled:
            return
        with self._lock:
            stat = self._stats.hotkey_stats.setdefault(sequence, HotkeyStat(sequence=sequence))
            stat.use_count += 1
            stat.last_used = _now()

    def get_statistics(self) -> Statistics:
        """Return an independent copy of the current statistics."""
        with self._lock:
            return copy.deepcopy(self._stats)

    def get_top_spells(self, limit: int) -> list[SpellStat]:
        """Return up to ``limit`` spells, most cast first."""
        if limit < 0:
            raise ValueError("limit must not be negative")
        with self._lock:
            spells = [replace(stat) for stat in self._stats.spell_stats.values()]
        spells.sort(key=lambda stat: stat.cast_count, reverse=True)
        return spells[:limit]

    def generate_report(self) -> str:
        stats = self.get_statistics()
        installed = stats.install_date.strftime("%Y-%m-%d") if stats.install_date else "0001-01-01"
        last_used = (stats.last_used.strftime("%Y-%m-%d %H:%M:%S")
                     if stats.last_used else "0001-01-01 00:00:00")

        lines = [
            "=== Spellbook Usage Statistics ===",
            "",
            f"Version: {stats.version}",
            f"Installed: {installed}",
            f"Last Used: {last_used}",
            f"Total Launches: {stats.total_launches}",
            f"Total Spells Cast: {stats.total_spells_cast}",
            "",
        ]
        top = self.get_top_spells(10)
        if top:
            lines.append("Top Spells:")
            lines.extend(
                f"{rank}. {spell.name} - {spell.cast_count} casts "
                f"({spell.success_rate * 100:.1f}% success)"
                for rank, spell in enumerate(top, start=1)
            )
            lines.append("")
        lines.append("Recent Daily Usage:")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Clear all statistics except the install date, then save."""
        with self._lock:
            self._stats = Statistics(install_date=self._stats.install_date)
            self.save()

    def load(self) -> None:
        """Replace the statistics with the contents of the data file."""
        if not self._data_file:
            return
        data = json.loads(Path(self._data_file).read_text(encoding="utf-8"))
        stats = Statistics.from_dict(data)
        with self._lock:
            self._stats = stats

    def save(self) -> None:
        """Write the statistics to the data file atomically; failures are logged."""
        if not self._data_file:
            return
        with self._lock:
            payload = json.dumps(self._stats.to_dict(), indent=2)

        path = Path(self._data_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create stats directory: %s", exc)
            return

        tmp = path.with_name(path.name + ".tmp")
        try:
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
        except OSError as exc:
            logger.error("Failed to write statistics: %s", exc)
            return

        try:
            os.replace(tmp, path)
        except OSError as exc:
            logger.error("Failed to save statistics: %s", exc)
            tmp.unlink(missing_ok=True)