"""Operating-system permissions the application needs, per platform."""

from __future__ import annotations

import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class PermissionType(str, Enum):
    """Kinds of permission the application may need."""

    ACCESSIBILITY = "accessibility"
    NOTIFICATION = "notification"
    AUTOSTART = "autostart"


class Status(str, Enum):
    """Current state of a permission."""

    GRANTED = "granted"
    DENIED = "denied"
    NOT_DETERMINED = "not_determined"
    NOT_APPLICABLE = "not_applicable"


@dataclass
class Permission:
    """One permission requirement and its state."""

    type: PermissionType
    status: Status
    description: str
    required: bool


class PermissionRequestError(Exception):
    """A permission could not be requested or its settings not opened."""


def _coerce(perm_type) -> PermissionType | None:
    try:
        return PermissionType(perm_type)
    except ValueError:
        return None


def _name(perm_type) -> str:
    return perm_type.value if isinstance(perm_type, PermissionType) else str(perm_type)


_NO_INSTRUCTIONS = "No instructions available for this permission type"


class PermissionManager(ABC):
    """Platform-specific permission management."""

    @abstractmethod
    def check(self) -> list[Permission]:
        """Return the current status of every permission."""

    @abstractmethod
    def request(self, perm_type) -> None:
        """Ask for a permission; raise :class:`PermissionRequestError` on failure."""

    @abstractmethod
    def get_instructions(self, perm_type) -> str:
        """Return instructions for granting a permission by hand."""

    @abstractmethod
    def open_settings(self, perm_type) -> None:
        """Open the system settings for a permission."""

    @abstractmethod
    def is_supported(self, perm_type) -> bool:
        """Whether the permission type is known on this platform."""


class MacManager(PermissionManager):
    """Permissions on macOS."""

    _SETTINGS_URLS = {
        PermissionType.ACCESSIBILITY:
            "x-apple.systempreferences:com.apple.preference.security?Privacy_Accessibility",
        PermissionType.NOTIFICATION:
            "x-apple.systempreferences:com.apple.preference.notifications",
        PermissionType.AUTOSTART:
            "x-apple.systempreferences:com.apple.preference.users",
    }

    _INSTRUCTIONS = {
        PermissionType.ACCESSIBILITY: (
            "To grant accessibility permission:\n"
            "1. Open System Preferences\n"
            "2. Go to Security & Privacy\n"
            "3. Click the Privacy tab\n"
            "4. Select Accessibility from the left sidebar\n"
            "5. Click the lock icon and enter your password\n"
            "6. Check the box next to Spellbook\n"
            "7. Restart Spellbook"
        ),
        PermissionType.NOTIFICATION: (
            "To enable notifications:\n"
            "1. Open System Preferences\n"
            "2. Go to Notifications & Focus\n"
            "3. Find Spellbook in the list\n"
            '4. Turn on "Allow Notifications"'
        ),
        PermissionType.AUTOSTART: (
            "To enable auto-start:\n"
            "1. Open System Preferences\n"
            "2. Go to Users & Groups\n"
            "3. Select your user account\n"
            "4. Click the Login Items tab\n"
            "5. Click the + button\n"
            "6. Select Spellbook from Applications\n"
            "7. Click Add"
        ),
    }

    def check(self) -> list[Permission]:
        # The real state needs native APIs; it is reported as undetermined.
        return [
            Permission(PermissionType.ACCESSIBILITY, Status.NOT_DETERMINED,
                       "Required for detecting global hotkeys", True),
            Permission(PermissionType.NOTIFICATION, Status.NOT_DETERMINED,
                       "Required for showing system notifications", False),
            Permission(PermissionType.AUTOSTART, Status.NOT_DETERMINED,
                       "Required for starting with system", False),
        ]

    def request(self, perm_type) -> None:
        kind = _coerce(perm_type)
        if kind is PermissionType.ACCESSIBILITY:
            raise PermissionRequestError(
                "accessibility permission must be granted manually in System Preferences"
            )
        if kind is PermissionType.NOTIFICATION:
            return
        if kind is PermissionType.AUTOSTART:
            raise PermissionRequestError("auto-start setup not implemented yet")
        raise PermissionRequestError(f"unknown permission type: {_name(perm_type)}")

    def get_instructions(self, perm_type) -> str:
        return self._INSTRUCTIONS.get(_coerce(perm_type), _NO_INSTRUCTIONS)

    def open_settings(self, perm_type) -> None:
        url = self._SETTINGS_URLS.get(_coerce(perm_type))
        if url is None:
            raise PermissionRequestError(
                f"no settings URL for permission type: {_name(perm_type)}"
            )
        subprocess.run(["open", url], check=True)

    def is_supported(self, perm_type) -> bool:
        return _coerce(perm_type) is not None


class LinuxManager(PermissionManager):
    """Permissions on Linux, where nothing special is required."""

    def check(self) -> list[Permission]:
        return [
            Permission(PermissionType.ACCESSIBILITY, Status.GRANTED,
                       "Global hotkey access", True),
            Permission(PermissionType.NOTIFICATION, Status.GRANTED,
                       "System notifications", False),
            Permission(PermissionType.AUTOSTART, Status.GRANTED,
                       "Launch at startup", False),
        ]

    def request(self, perm_type) -> None:
        return None

    def get_instructions(self, perm_type) -> str:
        if _coerce(perm_type) is PermissionType.ACCESSIBILITY:
            return "No special permissions needed on Linux for global hotkeys."
        return "This permission type is not applicable to Linux."

    def open_settings(self, perm_type) -> None:
        return None

    def is_supported(self, perm_type) -> bool:
        return _coerce(perm_type) is not None


class WindowsManager(PermissionManager):
    """Permissions on Windows."""

    _SETTINGS_COMMANDS = {
        PermissionType.ACCESSIBILITY: ["UserAccountControlSettings.exe"],
        PermissionType.NOTIFICATION: ["start", "ms-settings:notifications"],
        PermissionType.AUTOSTART: ["explorer.exe", "shell:startup"],
    }

    _INSTRUCTIONS = {
        PermissionType.ACCESSIBILITY: (
            "To run with administrative privileges:\n"
            "1. Right-click on Spellbook\n"
            '2. Select "Run as administrator"\n'
            '3. Click "Yes" in the UAC prompt\n'
            "\n"
            "Or to disable UAC prompts for Spellbook:\n"
            "1. Open Task Scheduler\n"
            "2. Create a new task with highest privileges\n"
            "3. Set it to run Spellbook at login"
        ),
        PermissionType.NOTIFICATION: (
            "Notifications are enabled by default on Windows 10 and later.\n"
            "If you don't see notifications:\n"
            "1. Open Settings (Win+I)\n"
            "2. Go to System > Notifications & actions\n"
            "3. Make sure notifications are turned on\n"
            "4. Find Spellbook in the app list and enable it"
        ),
        PermissionType.AUTOSTART: (
            "To enable auto-start:\n"
            "1. Press Win+R and type: shell:startup\n"
            "2. Copy Spellbook shortcut to the Startup folder\n"
            "\n"
            "Or use Task Manager:\n"
            "1. Open Task Manager (Ctrl+Shift+Esc)\n"
            "2. Go to the Startup tab\n"
            "3. If Spellbook is listed, right-click and Enable"
        ),
    }

    def check(self) -> list[Permission]:
        return [
            Permission(PermissionType.ACCESSIBILITY, Status.NOT_DETERMINED,
                       "Administrative privileges may be required for global hotkeys", False),
            Permission(PermissionType.NOTIFICATION, Status.GRANTED,
                       "Required for showing system notifications", False),
            Permission(PermissionType.AUTOSTART, Status.NOT_DETERMINED,
                       "Required for starting with Windows", False),
        ]

    def request(self, perm_type) -> None:
        kind = _coerce(perm_type)
        if kind is PermissionType.ACCESSIBILITY:
            raise PermissionRequestError("admin privilege elevation not implemented yet")
        if kind is PermissionType.NOTIFICATION:
            return
        if kind is PermissionType.AUTOSTART:
            raise PermissionRequestError("auto-start setup not implemented yet")
        raise PermissionRequestError(f"unknown permission type: {_name(perm_type)}")

    def get_instructions(self, perm_type) -> str:
        return self._INSTRUCTIONS.get(_coerce(perm_type), _NO_INSTRUCTIONS)

    def open_settings(self, perm_type) -> None:
        command = self._SETTINGS_COMMANDS.get(_coerce(perm_type))
        if command is None:
            raise PermissionRequestError(
                f"no settings URL for permission type: {_name(perm_type)}"
            )
        subprocess.run(
            command,
            check=True,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )

    def is_supported(self, perm_type) -> bool:
        return _coerce(perm_type) is not None


class StubManager(PermissionManager):
    """Permissions on platforms without permission management."""

    def check(self) -> list[Permission]:
        return [
            Permission(PermissionType.ACCESSIBILITY, Status.NOT_APPLICABLE,
                       "Not supported on this platform", False),
        ]

    def request(self, perm_type) -> None:
        raise PermissionRequestError("permission management not supported on this platform")

    def get_instructions(self, perm_type) -> str:
        return "Permission management is not supported on this platform"

    def open_settings(self, perm_type) -> None:
        raise PermissionRequestError("permission settings not available on this platform")

    def is_supported(self, perm_type) -> bool:
        return False


def new_manager(platform: str | None = None) -> PermissionManager:
    """Return the permission manager for ``platform`` (default: the running one)."""
    name = sys.platform if platform is None else platform
    if name == "darwin":
        return MacManager()
    if name in ("win32", "windows", "cygwin"):
        return WindowsManager()
    if name.startswith("linux"):
        return LinuxManager()
    return StubManager()