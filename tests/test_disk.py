from __future__ import annotations

import subprocess

import pytest

import swae.harness.disk as disk
from swae.harness.errors import DiskError


def _completed(stdout: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args="", returncode=0, stdout=stdout, stderr="")


def test_mount_command_per_platform() -> None:
    cmd, path = disk.mount_command(4096, "d1", "Linux")
    assert cmd == "sudo mount -t tmpfs -o size=4096 tmpfs /tmp/d1"
    assert path == "/tmp/d1"

    cmd, path = disk.mount_command(10, "d2", "Darwin")
    assert f"ram://{disk.HFS_MINIMUM}" in cmd
    assert path == "/Volumes/d2/"
    assert "ram://4000" in disk.mount_command(2000, "d3", "Darwin")[0]

    with pytest.raises(DiskError, match="macOS or Linux"):
        disk.mount_command(10, "d4", "Windows")


def test_mount_ram_disk_on_darwin_parses_device(monkeypatch: pytest.MonkeyPatch) -> None:
    commands: list[str] = []

    def _run(command: str) -> subprocess.CompletedProcess:
        commands.append(command)
        return _completed("Started erase on disk4\nFinished erase on /dev/disk4\n")

    monkeypatch.setattr(disk.platform, "system", lambda: "Darwin")
    monkeypatch.setattr(disk, "_run", _run)

    handle = disk.mount_ram_disk(2048, "quota")
    assert handle.mount_path == "/Volumes/quota/"
    assert handle.file_path == "/dev/disk4"

    handle.eject()
    assert commands[-1] == "diskutil eject /dev/disk4 -force"


def test_mount_ram_disk_on_linux(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:  # noqa: ANN001
    commands: list[str] = []
    monkeypatch.setattr(disk.platform, "system", lambda: "Linux")
    monkeypatch.setattr(disk, "_run", lambda command: commands.append(command) or _completed())
    monkeypatch.setattr(disk, "mount_command", lambda size, name, system: ("mount it", str(tmp_path / name)))

    handle = disk.mount_ram_disk(1024, "quota")
    assert handle.file_path == str(tmp_path / "quota")
    assert (tmp_path / "quota").is_dir()

    handle.eject()
    assert commands == ["mount it", f"sudo umount {tmp_path / 'quota'}"]


def test_mount_failures_become_disk_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(command: str) -> subprocess.CompletedProcess:
        raise subprocess.CalledProcessError(1, command, stderr="permission denied")

    monkeypatch.setattr(disk.platform, "system", lambda: "Darwin")
    monkeypatch.setattr(disk, "_run", _fail)
    with pytest.raises(DiskError, match="Error mounting disk"):
        disk.mount_ram_disk(2048)
    with pytest.raises(DiskError, match="Failed to eject"):
        disk.eject("/dev/disk9", system="Darwin")


def test_unresolvable_device_path(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(disk.platform, "system", lambda: "Darwin")
    monkeypatch.setattr(disk, "_run", lambda command: _completed("no device here"))
    with pytest.raises(DiskError, match="Unable to resolve disk path"):
        disk.mount_ram_disk(2048)


def test_generated_drive_names_are_prefixed() -> None:
    assert disk.generate_drive_name().startswith("swae_test_drive_")
