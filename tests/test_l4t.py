"""Tests for flashing/l4t.py - L4T discovery and host preparation."""

from unittest.mock import Mock, call, patch

import pytest

from nfs_staging.config import settings
from nfs_staging.flashing import l4t
from nfs_staging.storage.exceptions import CommandFailedError, L4TNotFoundError


@pytest.fixture
def default_settings(monkeypatch):
    monkeypatch.setattr(settings.settings_store, "values", dict(settings.DEFAULT_SETTINGS))


class TestDiscovery:
    def test_is_l4t_dir(self, l4t_tree, tmp_path):
        assert l4t.is_l4t_dir(l4t_tree)
        assert not l4t.is_l4t_dir(tmp_path)

    def test_find_returns_first_match(self, l4t_tree, tmp_path):
        other = tmp_path / "other"
        other.mkdir()

        assert l4t.find_l4t_dir([other, l4t_tree]) == l4t_tree
        assert l4t.find_l4t_dir([other]) is None

    def test_resolve_searches_paths(self, l4t_tree, tmp_path):
        assert l4t.resolve_l4t_dir(search_paths=[tmp_path / "missing", l4t_tree]) == l4t_tree

    def test_resolve_reports_searched_paths(self, tmp_path):
        missing = tmp_path / "missing"

        with pytest.raises(L4TNotFoundError) as excinfo:
            l4t.resolve_l4t_dir(search_paths=[missing])

        assert excinfo.value.searched == [str(missing)]

    def test_explicit_dir_only_needs_rootfs(self, l4t_tree):
        (l4t_tree / "flash.sh").unlink()

        assert l4t.resolve_l4t_dir(explicit=l4t_tree) == l4t_tree

    def test_explicit_dir_without_rootfs(self, tmp_path):
        with pytest.raises(L4TNotFoundError):
            l4t.resolve_l4t_dir(explicit=tmp_path)

    def test_search_paths_from_settings_are_absolute(self, default_settings):
        paths = l4t.search_paths_from_settings()

        assert len(paths) == len(settings.DEFAULT_L4T_SEARCH_PATHS)
        assert all(path.is_absolute() for path in paths)
        assert "~" not in str(paths[0])


class TestRecoveryDevice:
    @patch("nfs_staging.flashing.l4t.run_command")
    def test_filters_nvidia_lines(self, mock_run):
        mock_run.return_value = Mock(
            returncode=0,
            stdout=(
                "Bus 001 Device 002: ID 0955:7523 NVIDIA Corp. APX\n"
                "Bus 001 Device 003: ID 046d:c52b Logitech, Inc. Unifying Receiver\n"
            ),
        )

        assert l4t.detect_recovery_device() == [
            "Bus 001 Device 002: ID 0955:7523 NVIDIA Corp. APX"
        ]

    @patch("nfs_staging.flashing.l4t.run_command")
    def test_missing_lsusb_means_no_device(self, mock_run):
        mock_run.side_effect = CommandFailedError(["lsusb"], None, "No such file or directory")

        assert l4t.detect_recovery_device() == []


class TestCleanArtifacts:
    def test_removes_only_known_artifacts(self, l4t_tree):
        images = l4t_tree / "tools" / "kernel_flash" / "images"
        images.mkdir(parents=True)
        (images / "system.img").write_bytes(b"\0" * 16)
        (l4t_tree / "bootloader" / "signed").mkdir(parents=True)
        (l4t_tree / "bootloader" / "flashcmd.txt").write_text("flash")
        keep = l4t_tree / "bootloader" / "t186ref"
        keep.mkdir()

        removed = l4t.clean_flash_artifacts(l4t_tree)

        assert removed == [
            images,
            l4t_tree / "bootloader" / "signed",
            l4t_tree / "bootloader" / "flashcmd.txt",
        ]
        assert not images.exists()
        assert keep.is_dir()
        assert (l4t_tree / "rootfs").is_dir()

    def test_nothing_to_clean(self, l4t_tree):
        assert l4t.clean_flash_artifacts(l4t_tree) == []


class TestRestartNfsServices:
    @patch("nfs_staging.flashing.l4t.time.sleep")
    @patch("nfs_staging.flashing.l4t.run_command")
    def test_restarts_with_systemctl(self, mock_run, mock_sleep):
        mock_run.return_value = Mock(returncode=0)

        assert l4t.restart_nfs_services()
        assert mock_run.call_args_list == [
            call(["killall", "rpcbind"], check=False),
            call(["systemctl", "restart", "rpcbind"]),
            call(["systemctl", "restart", "nfs-kernel-server"]),
        ]
        mock_sleep.assert_called_once_with(1.0)

    @patch("nfs_staging.flashing.l4t.time.sleep")
    @patch("nfs_staging.flashing.l4t.run_command")
    def test_falls_back_to_plain_rpcbind(self, mock_run, mock_sleep):
        mock_run.side_effect = [
            Mock(returncode=1),
            CommandFailedError(["systemctl"], 1, "Unit rpcbind.service not found"),
            Mock(returncode=0),
            Mock(returncode=0),
        ]

        assert l4t.restart_nfs_services(settle_seconds=0)
        assert mock_run.call_args_list[2] == call(["rpcbind"])

    @patch("nfs_staging.flashing.l4t.time.sleep")
    @patch("nfs_staging.flashing.l4t.run_command")
    def test_reports_nfs_server_failure(self, mock_run, mock_sleep):
        mock_run.side_effect = [
            CommandFailedError(["killall"], None, "No such file or directory"),
            Mock(returncode=0),
            CommandFailedError(["systemctl"], 5, "Unit nfs-kernel-server.service not found"),
        ]

        assert not l4t.restart_nfs_services(settle_seconds=0)


class TestUsbAutosuspend:
    def test_writes_minus_one(self, tmp_path):
        param = tmp_path / "autosuspend"
        param.write_text("2\n")

        assert l4t.disable_usb_autosuspend(param)
        assert param.read_text() == "-1\n"

    def test_unwritable_parameter(self, tmp_path):
        assert not l4t.disable_usb_autosuspend(tmp_path / "missing" / "autosuspend")


class TestFlash:
    def test_default_command(self, default_settings):
        command = l4t.build_flash_command()

        assert command[0] == "./tools/kernel_flash/l4t_initrd_flash.sh"
        assert command[-2:] == ["jetson-orin-nano-devkit", "internal"]
        assert command[command.index("--external-device") + 1] == "nvme0n1p1"
        assert command[command.index("--network") + 1] == "usb0"
        assert "-c bootloader/generic/cfg/flash_t234_qspi.xml" in command

    def test_command_overrides(self, default_settings):
        command = l4t.build_flash_command(board="jetson-agx-orin-devkit", target="sda1", network="eth0")

        assert command[-2] == "jetson-agx-orin-devkit"
        assert command[command.index("--external-device") + 1] == "sda1"
        assert command[command.index("--network") + 1] == "eth0"

    @patch("nfs_staging.flashing.l4t.subprocess.run")
    def test_run_flash_returns_exit_code(self, mock_run, l4t_tree):
        mock_run.return_value = Mock(returncode=4)

        assert l4t.run_flash(l4t_tree, ["./flash.sh"]) == 4
        mock_run.assert_called_once_with(["./flash.sh"], cwd=str(l4t_tree), check=False)

    @patch("nfs_staging.flashing.l4t.subprocess.run")
    def test_run_flash_cannot_start(self, mock_run, l4t_tree):
        mock_run.side_effect = FileNotFoundError(2, "No such file or directory")

        with pytest.raises(CommandFailedError):
            l4t.run_flash(l4t_tree, ["./missing.sh"])
