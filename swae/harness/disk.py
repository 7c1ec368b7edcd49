"""RAM disks for storage-quota tests.

Linux mounts a tmpfs under /tmp (needs sudo); macOS creates an HFS+ RAM disk
via hdid/diskutil. The returned handle ejects it again.
"""

from __future__ import annotations

import logging
import platform
import random
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import DiskError

logger = logging.getLogger("swae.harness.disk")

# Smallest size (in 512-byte sectors) diskutil accepts for HFS+.
HFS_MINIMUM = 1100


@dataclass
class DiskHandle:
    mount_path: str
    file_path: str
    system: str

    def eject(self) -> subprocess.CompletedProcess:
        return eject(self.file_path, system=self.system)


def generate_drive_name() -> str:
    return f"swae_test_drive_{random.randint(0, 999_999)}"


def _run(command: str) -> subprocess.CompletedProcess:
    return subprocess.run(command, shell=True, capture_output=True, text=True, check=True)


def mount_command(size: int, name: str, system: str) -> tuple[str, str]:
    """Return (shell command, mount path) for the platform."""
    if system == "Darwin":
        sectors = size * 2 if size > HFS_MINIMUM else HFS_MINIMUM
        return f'diskutil erasedisk HFS+ "{name}" $(hdid -nomount ram://{sectors})', f"/Volumes/{name}/"
    if system == "Linux":
        mount_path = f"/tmp/{name}"
        return f"sudo mount -t tmpfs -o size={size} tmpfs {mount_path}", mount_path
    raise DiskError("mount_ram_disk can only be run on macOS or Linux")


def eject_command(path: str, system: str) -> str:
    return f"diskutil eject {path} -force" if system == "Darwin" else f"sudo umount {path}"


def eject(path: str, *, system: str | None = None) -> subprocess.CompletedProcess:
    command = eject_command(path, system or platform.system())
    try:
        return _run(command)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise DiskError(f"Failed to eject disk: {exc}") from exc


def mount_ram_disk(size: int, name: str | None = None) -> DiskHandle:
    system = platform.system()
    name = name or generate_drive_name()
    command, mount_path = mount_command(size, name, system)
    if system == "Linux":
        Path(mount_path).mkdir(parents=True, exist_ok=True)

    try:
        result = _run(command)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise DiskError(f"Error mounting disk: {exc}") from exc

    if system == "Darwin":
        # diskutil prints the /dev/diskN node it erased.
        match = re.search(r"/[a-z/0-9A-Z.]+", result.stdout or "")
        file_path = match.group(0) if match else ""
    else:
        file_path = mount_path
    if not file_path:
        raise DiskError("Unable to resolve disk path")

    logger.info("Mounted RAM disk %s at %s", name, mount_path)
    return DiskHandle(mount_path=mount_path, file_path=file_path, system=system)
