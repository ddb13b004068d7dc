"""Tests for the command line entry point."""

import json

import pytest

from tests.conftest import FakeDiskUtility, fake_copy
from winusb_creator import main as main_module
from winusb_creator.config import settings
from winusb_creator.domain import Copying, Failed, Mounting, RemovableDrive
from winusb_creator.services.statistics import TransferMonitor
from winusb_creator.storage.platform import UnsupportedPlatformError


@pytest.fixture
def cli(mocker, usb_drive, fake_image_service):
    """Patch platform services and logging; return the fake collaborators."""
    disk_utility = FakeDiskUtility(drives=[usb_drive])
    mocker.patch("winusb_creator.main.setup_logging")
    mocker.patch("winusb_creator.main.get_disk_utility", return_value=disk_utility)
    mocker.patch("winusb_creator.main.get_image_service", return_value=fake_image_service)
    mocker.patch("winusb_creator.services.creator.copy_entries", side_effect=fake_copy)
    settings.settings_store.values["settle_delay_seconds"] = 0.0
    return disk_utility, fake_image_service


class TestParser:
    """Tests for build_parser()."""

    def test_create_arguments(self):
        args = main_module.build_parser().parse_args(["-d", "create", "Win11.iso", "disk4", "-y", "--eject"])

        assert args.command == "create"
        assert str(args.iso) == "Win11.iso"
        assert args.drive == "disk4"
        assert args.yes is True
        assert args.eject is True
        assert args.debug is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main_module.build_parser().parse_args([])


class TestRenderState:
    """Tests for render_state()."""

    def test_copying_line(self):
        monitor = TransferMonitor()
        monitor.speed_text = "381.5 MB/s"
        monitor.eta_text = "Less than a minute"
        state = Copying(0.5, "install.wim", 512 * 1024**2, 1024**3)

        line = main_module.render_state(state, monitor)

        assert line == "[ 47.5%] install.wim  512.0MB of 1.0GB  381.5 MB/s  Less than a minute"

    def test_step_line(self):
        assert main_module.render_state(Mounting(), TransferMonitor()) == "[ 10.0%] Mounting ISO..."

    def test_failed_line(self):
        line = main_module.render_state(Failed("Failed to mount the ISO file"), TransferMonitor())

        assert line == "[  0.0%] Failed: Failed to mount the ISO file"


class TestListCommand:
    """Tests for 'winusb-creator list'."""

    def test_lists_drives(self, cli, capsys):
        assert main_module.main(["list"]) == 0

        assert "disk4  SanDisk Ultra (14.9GB)" in capsys.readouterr().out

    def test_no_drives(self, cli, capsys):
        cli[0].drives = []

        assert main_module.main(["list"]) == 1
        assert "No removable drives found" in capsys.readouterr().out


class TestCreateCommand:
    """Tests for 'winusb-creator create'."""

    def test_success(self, cli, iso_image, capsys):
        disk_utility, image_service = cli

        code = main_module.main(["create", str(iso_image.path), "disk4", "-y"])

        assert code == 0
        assert "USB Created Successfully" in capsys.readouterr().out
        assert "format_fat32" in disk_utility.call_names()
        assert "eject" not in disk_utility.call_names()
        assert image_service.unmounted == [image_service.mount_point]

    def test_eject_after_success(self, cli, iso_image):
        disk_utility, _ = cli

        assert main_module.main(["create", str(iso_image.path), "/dev/disk4", "-y", "--eject"]) == 0
        assert ("eject", "/dev/disk4") in disk_utility.calls

    def test_failure_exit_code(self, cli, iso_image, capsys):
        _, image_service = cli
        image_service.mount_error = OSError("hdiutil: attach failed")

        assert main_module.main(["create", str(iso_image.path), "disk4", "-y"]) == 1
        assert "Failed: Failed to mount the ISO file" in capsys.readouterr().out

    def test_unknown_drive(self, cli, iso_image, capsys):
        assert main_module.main(["create", str(iso_image.path), "disk9", "-y"]) == 1
        assert "No removable drive named disk9" in capsys.readouterr().out

    def test_declined_confirmation(self, cli, iso_image, mocker, capsys):
        disk_utility, _ = cli
        mocker.patch("builtins.input", return_value="n")

        assert main_module.main(["create", str(iso_image.path), "disk4"]) == 1
        assert "Aborted" in capsys.readouterr().out
        assert "format_fat32" not in disk_utility.call_names()

    def test_accepted_confirmation(self, cli, iso_image, mocker):
        mocker.patch("builtins.input", return_value="yes")

        assert main_module.main(["create", str(iso_image.path), "disk4"]) == 0

    def test_missing_iso(self, cli, tmp_path, capsys):
        assert main_module.main(["create", str(tmp_path / "missing.iso"), "disk4", "-y"]) == 1
        assert "Error: The selected file is not a valid Windows ISO" in capsys.readouterr().out

    def test_single_drive_selected_automatically(self, cli, iso_image):
        disk_utility, _ = cli

        assert main_module.main(["create", str(iso_image.path), "-y"]) == 0
        assert ("format_fat32", "/dev/disk4", "WINUSB") in disk_utility.calls

    def test_several_drives_need_a_name(self, cli, iso_image, capsys):
        disk_utility, _ = cli
        disk_utility.drives.append(
            RemovableDrive("disk5", "Kingston DataTraveler", "/dev/disk5", 32_000_000_000)
        )

        assert main_module.main(["create", str(iso_image.path), "-y"]) == 1
        out = capsys.readouterr().out
        assert "Several removable drives found" in out
        assert "disk5  Kingston DataTraveler" in out
        assert "format_fat32" not in disk_utility.call_names()

    def test_no_drive_to_select(self, cli, iso_image, capsys):
        cli[0].drives = []

        assert main_module.main(["create", str(iso_image.path), "-y"]) == 1
        assert "No removable drives found" in capsys.readouterr().out

    def test_drive_unplugged_during_confirmation(self, cli, iso_image, mocker, capsys):
        disk_utility, _ = cli

        def unplug_and_accept(prompt):
            disk_utility.drives = []
            return "y"

        mocker.patch("builtins.input", side_effect=unplug_and_accept)

        assert main_module.main(["create", str(iso_image.path), "disk4"]) == 1
        assert "no longer connected" in capsys.readouterr().out
        assert "format_fat32" not in disk_utility.call_names()


class TestConfigCommand:
    """Tests for 'winusb-creator config'."""

    @pytest.fixture
    def settings_path(self, tmp_path, monkeypatch, mocker):
        mocker.patch("winusb_creator.main.setup_logging")
        path = tmp_path / "settings.json"
        monkeypatch.setattr(settings, "SETTINGS_PATH", path)
        return path

    def test_shows_all_settings(self, settings_path, capsys):
        assert main_module.main(["config"]) == 0

        out = capsys.readouterr().out
        assert "volume_label = WINUSB" in out
        assert "settle_delay_seconds = 2.0" in out

    def test_shows_one_setting(self, settings_path, capsys):
        assert main_module.main(["config", "min_drive_size_bytes"]) == 0
        assert capsys.readouterr().out.strip() == "4000000000"

    def test_sets_and_saves_label(self, settings_path):
        assert main_module.main(["config", "volume_label", "win11"]) == 0

        assert json.loads(settings_path.read_text())["volume_label"] == "win11"
        assert settings.volume_label() == "WIN11"

    def test_converts_numbers(self, settings_path):
        assert main_module.main(["config", "settle_delay_seconds", "5"]) == 0

        assert settings.get_setting("settle_delay_seconds") == 5.0
        assert json.loads(settings_path.read_text())["settle_delay_seconds"] == 5.0

    def test_rejects_non_number(self, settings_path, capsys):
        assert main_module.main(["config", "min_drive_size_bytes", "lots"]) == 1

        assert "min_drive_size_bytes must be a number" in capsys.readouterr().out
        assert not settings_path.exists()

    def test_unknown_key(self, settings_path):
        with pytest.raises(SystemExit):
            main_module.main(["config", "colour", "blue"])


def test_unsupported_platform(mocker, capsys):
    mocker.patch("winusb_creator.main.setup_logging")
    mocker.patch(
        "winusb_creator.main.get_disk_utility",
        side_effect=UnsupportedPlatformError("Platform windows is not supported"),
    )

    assert main_module.main(["list"]) == 1
    assert "Platform windows is not supported" in capsys.readouterr().out
