"""Tests for configuration loading."""

import pytest
import yaml
from pydantic import ValidationError

from promptdesk.server.config import Config, RelayConfig, ServerConfig
from promptdesk.server.main import main as server_main


class TestConfig:

    def test_defaults(self, temp_data_dir):
        config = Config(data_dir=temp_data_dir)

        assert config.server.host == "localhost"
        assert config.server.port == 5010
        assert config.files.result_limit == 20
        assert config.files.static_excludes == [".git/**", "node_modules/**"]
        assert config.relay.mount_prefix == "/proxy"
        assert config.data_file == temp_data_dir.resolve() / "data.json"
        assert config.log_dir == temp_data_dir.resolve() / "logs"

    def test_data_dir_created(self, temp_data_dir):
        config = Config(data_dir=temp_data_dir / "nested" / "data")
        assert config.data_dir.is_dir()

    def test_load_yaml(self, temp_data_dir):
        config_file = temp_data_dir / "promptdesk.yaml"
        config_file.write_text(yaml.safe_dump({
            "data_dir": str(temp_data_dir),
            "server": {"port": 6000},
            "relay": {"mount_prefix": "/relay/"},
        }))

        config = Config.load(config_file)

        assert config.server.port == 6000
        assert config.relay.mount_prefix == "/relay"

    def test_missing_explicit_file(self, temp_data_dir):
        with pytest.raises(FileNotFoundError):
            Config.load(temp_data_dir / "missing.yaml")

    def test_save_and_reload(self, temp_data_dir):
        config = Config(data_dir=temp_data_dir)
        config.server.port = 7001
        config_file = temp_data_dir / "saved.yaml"

        config.save(config_file)
        loaded = Config.load(config_file)

        assert loaded.server.port == 7001
        assert loaded.data_dir == config.data_dir

    @pytest.mark.parametrize("port", [0, 70000])
    def test_invalid_port(self, port):
        with pytest.raises(ValidationError):
            ServerConfig(port=port)

    @pytest.mark.parametrize("prefix", ["proxy", "/"])
    def test_invalid_mount_prefix(self, prefix):
        with pytest.raises(ValidationError):
            RelayConfig(mount_prefix=prefix)

    def test_override_port(self, temp_data_dir):
        config = Config(data_dir=temp_data_dir)
        config.override_port(6123)
        assert config.server.port == 6123
        assert config.server.host == "localhost"

    def test_override_port_validated(self, temp_data_dir):
        config = Config(data_dir=temp_data_dir)
        with pytest.raises(ValidationError):
            config.override_port(70000)
        assert config.server.port == 5010


@pytest.mark.asyncio
async def test_server_main_rejects_bad_port(temp_data_dir):
    config_file = temp_data_dir / "promptdesk.yaml"
    config_file.write_text(yaml.safe_dump({"data_dir": str(temp_data_dir)}))

    with pytest.raises(SystemExit) as exc_info:
        await server_main(str(config_file), port=70000)
    assert exc_info.value.code == 1
