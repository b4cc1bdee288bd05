"""
Preflight system checks: are the pipeline's external tools installed?

Checks for:
  - tar      (archiver / extractor)
  - gpg      (encryptor / decryptor)
  - split    (splitter, needs numeric suffix support: -d)
  - cat      (concatenator)

Each check returns a result with:
  - Whether the tool is installed
  - Current version (if installed)
  - Platform-specific install command
"""

from __future__ import annotations

import platform
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .models import ToolsConfig


class ToolStatus(str, Enum):
    """Status of a system tool."""
    INSTALLED = "installed"
    MISSING = "missing"


@dataclass
class ToolCheck:
    """Result of checking a single system tool."""

    name: str
    binary: str
    status: ToolStatus
    required: bool = True
    path: str = ""
    version: str = ""
    install_cmd: str = ""
    install_note: str = ""

    @property
    def installed(self) -> bool:
        """Whether the tool is installed."""
        return self.status == ToolStatus.INSTALLED

    @property
    def ok(self) -> bool:
        """Whether this check passes (installed, or optional and missing)."""
        return self.installed or not self.required


@dataclass
class PreflightResult:
    """Combined result of all preflight checks."""

    checks: list[ToolCheck] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        """True if all required tools pass."""
        return all(c.ok for c in self.checks)

    @property
    def required_missing(self) -> list[ToolCheck]:
        """List of required tools that are missing."""
        return [c for c in self.checks if c.required and not c.installed]


# ---------------------------------------------------------------------------
# Platform detection
# ---------------------------------------------------------------------------

def _system() -> str:
    """Canonical platform name."""
    return platform.system()


def _detect_linux_pkg_manager() -> Optional[str]:
    """Detect the Linux package manager."""
    for mgr in ("apt", "dnf", "pacman", "zypper", "apk"):
        if shutil.which(mgr):
            return mgr
    return None


# Package that provides each tool, per package manager.
_PACKAGES = {
    "tar": {"apt": "tar", "dnf": "tar", "pacman": "tar", "zypper": "tar",
            "apk": "tar", "brew": "gnu-tar"},
    "gpg": {"apt": "gnupg", "dnf": "gnupg2", "pacman": "gnupg", "zypper": "gpg2",
            "apk": "gnupg", "brew": "gnupg"},
    "split": {"apt": "coreutils", "dnf": "coreutils", "pacman": "coreutils",
              "zypper": "coreutils", "apk": "coreutils", "brew": "coreutils"},
    "cat": {"apt": "coreutils", "dnf": "coreutils", "pacman": "coreutils",
            "zypper": "coreutils", "apk": "coreutils", "brew": "coreutils"},
}

_INSTALL_TEMPLATES = {
    "apt": "sudo apt install -y {pkg}",
    "dnf": "sudo dnf install -y {pkg}",
    "pacman": "sudo pacman -S --noconfirm {pkg}",
    "zypper": "sudo zypper install -y {pkg}",
    "apk": "sudo apk add {pkg}",
    "brew": "brew install {pkg}",
}

_NOTES = {
    "tar": "tar archives the source directory and extracts it on restore.",
    "gpg": "GnuPG encrypts the archive stream. Required for every backup.",
    "split": "split writes the numbered chunk files (GNU coreutils, needs -d).",
    "cat": "cat joins the chunk files back into one stream on restore.",
}


def _install_cmd(tool: str) -> str:
    system = _system()
    if system == "Linux":
        mgr = _detect_linux_pkg_manager() or "apt"
    elif system == "Darwin":
        mgr = "brew" if shutil.which("brew") else ""
    else:
        mgr = ""
    pkg = _PACKAGES.get(tool, {}).get(mgr)
    if not mgr or not pkg:
        return ""
    return _INSTALL_TEMPLATES[mgr].format(pkg=pkg)


# ---------------------------------------------------------------------------
# Individual tool checks
# ---------------------------------------------------------------------------

def check_tool(tool: str, binary: Optional[str] = None, required: bool = True) -> ToolCheck:
    """Check if one external tool is installed.

    Args:
        tool: Logical tool name ("tar", "gpg", "split", "cat").
        binary: Executable to look for. Defaults to the tool name.
        required: Whether the pipeline cannot run without it.

    Returns:
        ToolCheck for the tool.
    """
    binary = binary or tool
    path = shutil.which(binary)

    if path:
        version = ""
        try:
            result = subprocess.run(
                [binary, "--version"],
                capture_output=True, text=True, timeout=5,
            )
            if result.returncode == 0 and result.stdout.strip():
                version = result.stdout.strip().split("\n")[0][:60]
        except (OSError, subprocess.TimeoutExpired):
            pass
        return ToolCheck(
            name=tool,
            binary=binary,
            status=ToolStatus.INSTALLED,
            required=required,
            path=path,
            version=version,
        )

    return ToolCheck(
        name=tool,
        binary=binary,
        status=ToolStatus.MISSING,
        required=required,
        install_cmd=_install_cmd(tool),
        install_note=_NOTES.get(tool, ""),
    )


# ---------------------------------------------------------------------------
# Full preflight
# ---------------------------------------------------------------------------

def run_preflight(tools: Optional[ToolsConfig] = None) -> PreflightResult:
    """Run all preflight checks against the configured executables.

    Args:
        tools: Tool configuration. Defaults to the stock binaries.

    Returns:
        PreflightResult with one check per tool.
    """
    tools = tools or ToolsConfig()
    return PreflightResult(checks=[
        check_tool("tar", tools.tar),
        check_tool("gpg", tools.gpg),
        check_tool("split", tools.split),
        check_tool("cat", tools.cat),
    ])
