import os

import pytest

import ffat_uploader
from ffat_backend.settings import UploaderSettings
from ffat_backend.wear_leveling import calculate_wl_layout

FFAT_CSV = "nvs, data, nvs, 0x9000, 0x5000\nffat, data, fat, 0x290000, 0x170000\n"


@pytest.fixture
def settings(tmp_path):
    return UploaderSettings(str(tmp_path / "settings.ini"))


@pytest.fixture(autouse=True)
def work_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def partitions(tmp_path):
    path = tmp_path / "partitions.csv"
    path.write_text(FFAT_CSV)
    return path


class TestLayoutCommand:
    def test_prints_layout(self, partitions, settings, capsys):
        assert ffat_uploader.main(['layout', str(partitions)], settings=settings) == 0
        out = capsys.readouterr().out
        assert "0x290000-0x400000" in out
        assert "0x16d000" in out
        assert "Max pos:       365" in out

    def test_missing_fat_partition(self, tmp_path, settings):
        path = tmp_path / "nofat.csv"
        path.write_text("nvs, data, nvs, 0x9000, 0x5000\n")
        assert ffat_uploader.main(['layout', str(path)], settings=settings) == 3

    def test_malformed_table(self, tmp_path, settings):
        path = tmp_path / "bad.csv"
        path.write_text("ffat, data, fat, 0x1K, 0x10000\n")
        assert ffat_uploader.main(['layout', str(path)], settings=settings) == 4

    def test_missing_file(self, tmp_path, settings):
        assert ffat_uploader.main(['layout', str(tmp_path / "none.csv")], settings=settings) == 8


class TestWrapCommand:
    def test_wrap_with_partition_size(self, tmp_path, settings):
        layout = calculate_wl_layout(0x20000)
        raw = tmp_path / "raw.bin"
        raw.write_bytes(b'\x00' * layout.flash_size)
        out = tmp_path / "ffat.bin"
        assert ffat_uploader.main(['wrap', str(raw), str(out), '--partition-size', '128K'],
                                  settings=settings) == 0
        assert out.stat().st_size == 0x20000

    def test_wrap_with_partition_table(self, tmp_path, partitions, settings):
        raw = tmp_path / "raw.bin"
        raw.write_bytes(b'\x00' * calculate_wl_layout(0x170000).flash_size)
        out = tmp_path / "ffat.bin"
        assert ffat_uploader.main(['wrap', str(raw), str(out), '--partitions', str(partitions)],
                                  settings=settings) == 0
        assert out.stat().st_size == 0x170000

    def test_wrap_size_mismatch(self, tmp_path, settings):
        raw = tmp_path / "raw.bin"
        raw.write_bytes(b'\x00' * 0x20000)
        out = tmp_path / "ffat.bin"
        assert ffat_uploader.main(['wrap', str(raw), str(out), '--partition-size', '0x20000'],
                                  settings=settings) == 6
        assert not out.exists()

    def test_wrap_partition_too_small(self, tmp_path, settings):
        raw = tmp_path / "raw.bin"
        raw.write_bytes(b'')
        assert ffat_uploader.main(['wrap', str(raw), str(tmp_path / "o.bin"),
                                   '--partition-size', '16K'], settings=settings) == 5


class TestBuildCommand:
    def test_non_esp32_board(self, tmp_path, settings):
        (tmp_path / "sketch" / "data").mkdir(parents=True)
        argv = ['build', '--sketch', str(tmp_path / "sketch"), '--fqbn', 'esp8266:esp8266:generic']
        assert ffat_uploader.main(argv, settings=settings) == 9

    def test_missing_data_folder(self, tmp_path, settings):
        argv = ['build', '--sketch', str(tmp_path), '--fqbn', 'esp32:esp32:esp32']
        assert ffat_uploader.main(argv, settings=settings) == 9

    def test_upload_without_port(self, tmp_path, partitions, settings):
        sketch = tmp_path / "sketch"
        (sketch / "data").mkdir(parents=True)
        (sketch / "partitions.csv").write_text(FFAT_CSV)
        argv = ['upload', '--sketch', str(sketch), '--fqbn', 'esp32:esp32:esp32']
        assert ffat_uploader.main(argv, settings=settings) == 9

    def test_unreadable_data_entry(self, tmp_path, settings):
        sketch = tmp_path / "sketch"
        (sketch / "data").mkdir(parents=True)
        (sketch / "partitions.csv").write_text(FFAT_CSV)
        os.symlink(tmp_path / "missing.txt", sketch / "data" / "link.txt")
        argv = ['build', '--sketch', str(sketch), '--fqbn', 'esp32:esp32:esp32']
        assert ffat_uploader.main(argv, settings=settings) == 8
        assert not (sketch / "mkfatfs.bin").exists()


class TestConfigCommand:
    def test_set_and_show(self, settings, capsys):
        assert ffat_uploader.main(['config', 'sector_size', '512'], settings=settings) == 0
        assert ffat_uploader.main(['config', 'sector_size'], settings=settings) == 0
        assert capsys.readouterr().out.strip() == "512"

    def test_list(self, settings, capsys):
        assert ffat_uploader.main(['config'], settings=settings) == 0
        out = capsys.readouterr().out
        assert "sector_size=4096" in out
        assert "mkfatfs_path=" in out

    def test_reset(self, settings):
        settings.set('upload_speed', 921600)
        assert ffat_uploader.main(['config', '--reset', 'upload_speed'], settings=settings) == 0
        assert settings.upload_speed is None

    def test_invalid_value(self, settings):
        assert ffat_uploader.main(['config', 'sector_size', 'huge'], settings=settings) == 2


class TestErrorReports:
    def test_each_error_has_its_own_status(self):
        statuses = [status for _, status, _ in ffat_uploader.ERROR_REPORTS]
        assert len(statuses) == len(set(statuses))
        assert 0 not in statuses and 1 not in statuses and 2 not in statuses
