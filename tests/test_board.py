import pytest

from ffat_backend.board import (BoardContext, parse_build_properties, load_build_properties,
                                DEFAULT_UPLOAD_SPEED)
from ffat_backend.errors import BoardConfigError, ImageIOError


@pytest.fixture
def platform_dir(tmp_path):
    partitions = tmp_path / "platform" / "tools" / "partitions"
    partitions.mkdir(parents=True)
    (partitions / "default_ffat.csv").write_text("ffat, data, fat, 0x290000, 0x170000\n")
    (partitions / "ffat.csv").write_text("ffat, data, fat, 0x210000, 0x1F0000\n")
    return tmp_path / "platform"


@pytest.fixture
def sketch_dir(tmp_path):
    sketch = tmp_path / "sketch"
    (sketch / "data").mkdir(parents=True)
    return sketch


@pytest.fixture
def properties(platform_dir):
    return {
        'runtime.platform.path': str(platform_dir),
        'build.partitions': 'default_ffat',
        'menu.PartitionScheme.ffat.build.partitions': 'ffat',
        'build.mcu': 'esp32s3',
        'upload.speed': '921600',
        'build.flash_mode': 'dio',
        'build.flash_freq': '80m',
    }


def make_board(sketch_dir, properties, **kwargs):
    return BoardContext('esp32:esp32:esp32s3', properties, str(sketch_dir), **kwargs)


class TestBuildProperties:
    def test_parse(self):
        text = "# comment\n\nbuild.mcu=esp32\nname = value with = sign\nnot a property\n"
        assert parse_build_properties(text) == {
            'build.mcu': 'esp32',
            'name': 'value with = sign',
        }

    def test_load(self, tmp_path):
        path = tmp_path / "board.txt"
        path.write_text("upload.speed=115200\n")
        assert load_build_properties(str(path)) == {'upload.speed': '115200'}

    def test_load_missing(self, tmp_path):
        with pytest.raises(ImageIOError):
            load_build_properties(str(tmp_path / "missing.txt"))


class TestBoardContext:
    def test_esp32_detection(self, sketch_dir, properties):
        assert make_board(sketch_dir, properties).is_esp32()
        other = BoardContext('esp8266:esp8266:nodemcuv2', {}, str(sketch_dir))
        assert not other.is_esp32()
        with pytest.raises(BoardConfigError):
            other.require_esp32()
        assert not BoardContext('', {}, str(sketch_dir)).is_esp32()

    def test_board_properties(self, sketch_dir, properties):
        board = make_board(sketch_dir, properties)
        assert board.mcu == 'esp32s3'
        assert board.flash_mode == 'dio'
        assert board.flash_freq == '80m'
        assert board.data_folder == str(sketch_dir / "data")

    def test_default_partition_scheme(self, sketch_dir, properties, platform_dir):
        board = make_board(sketch_dir, properties)
        assert board.resolve_partition_file() == str(platform_dir / "tools" / "partitions" / "default_ffat.csv")

    def test_selected_partition_scheme(self, sketch_dir, properties, platform_dir):
        board = make_board(sketch_dir, properties, partition_scheme='ffat')
        assert board.resolve_partition_file() == str(platform_dir / "tools" / "partitions" / "ffat.csv")

    def test_unknown_scheme_falls_back_to_default(self, sketch_dir, properties):
        board = make_board(sketch_dir, properties, partition_scheme='huge_app')
        assert board.resolve_partition_file().endswith("default_ffat.csv")

    def test_sketch_partitions_take_precedence(self, sketch_dir, properties):
        local = sketch_dir / "partitions.csv"
        local.write_text("ffat, data, fat, 0x100000, 0x100000\n")
        board = make_board(sketch_dir, properties, partition_scheme='ffat')
        assert board.resolve_partition_file() == str(local)

    def test_no_scheme_defined(self, sketch_dir):
        with pytest.raises(BoardConfigError):
            make_board(sketch_dir, {}).resolve_partition_file()

    def test_missing_partition_file(self, sketch_dir, properties):
        properties['build.partitions'] = 'not_there'
        with pytest.raises(BoardConfigError):
            make_board(sketch_dir, properties).resolve_partition_file()

    def test_missing_platform_path(self, sketch_dir, properties):
        del properties['runtime.platform.path']
        with pytest.raises(BoardConfigError):
            make_board(sketch_dir, properties).resolve_partition_file()

    def test_upload_speed(self, sketch_dir, properties):
        assert make_board(sketch_dir, properties).resolve_upload_speed() == 921600
        assert make_board(sketch_dir, properties, upload_speed=460800).resolve_upload_speed() == 460800
        assert make_board(sketch_dir, {}).resolve_upload_speed() == DEFAULT_UPLOAD_SPEED
        assert make_board(sketch_dir, {'upload.speed': 'fast'}).resolve_upload_speed() == DEFAULT_UPLOAD_SPEED

    def test_ports(self, sketch_dir, properties):
        with pytest.raises(BoardConfigError):
            make_board(sketch_dir, properties).require_port()

        serial = make_board(sketch_dir, properties, port='/dev/ttyUSB0')
        assert not serial.is_network_upload()
        assert serial.require_port() == '/dev/ttyUSB0'

        network = make_board(sketch_dir, properties, port='192.168.4.1', port_protocol='network')
        with pytest.raises(BoardConfigError):
            network.require_port()
        network.network_port = 3232
        assert network.require_port() == '192.168.4.1'
