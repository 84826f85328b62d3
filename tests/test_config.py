import json
import pytest

import config
import const
import exceptions
import tun

TUN_SETTINGS = {
    "MODE": "tun",
    "TUN_ADDRESS": "10.8.0.1",
    "TUN_DSTADDR": "10.8.0.2",
    "PEER_ADDRESS": "203.0.113.5",
    "PEER_PORT": 12000,
}


def load(**overrides):
    settings = dict(TUN_SETTINGS)
    settings.update(overrides)
    config.Config().load_settings(settings)
    return config.Config()


def test_singleton():
    assert config.Config() is config.Config()


def test_defaults():
    cfg = load()

    assert cfg.get_tun_netmask() == "255.255.255.0"
    assert cfg.get_mtu() == 1500
    assert cfg.get_listen_address() == "0.0.0.0"
    assert cfg.get_listen_port() == 12000
    assert cfg.get_device_name() == ""
    assert cfg.get_device_path() == const.DEFAULT_DEVICE_PATH
    assert cfg.get_packet_info() is False
    assert cfg.get_log_level() == "INFO"
    assert cfg.get_nice_level() is None
    assert cfg.get_socket_buffer_size() is None
    assert cfg.get_run_command_after_tun_ready() is None


def test_tun_settings():
    settings = load(MTU=1400, TUN_NETMASK="255.255.255.252").get_device_settings()

    assert isinstance(settings, tun.TunSettings)
    assert (settings.addr, settings.dstaddr, settings.netmask, settings.mtu) == \
        ("10.8.0.1", "10.8.0.2", "255.255.255.252", 1400)


def test_tap_settings():
    settings = load(MODE="tap", TUN_DSTADDR=None, TUN_HWADDR="02:00:00:00:00:01").get_device_settings()

    assert isinstance(settings, tun.TapSettings)
    assert settings.hwaddr == "02:00:00:00:00:01"


def test_tun_requires_dstaddr():
    with pytest.raises(exceptions.ConfigError, match="TUN_DSTADDR"):
        load(TUN_DSTADDR=None)


def test_tap_rejects_dstaddr():
    with pytest.raises(exceptions.ConfigError, match="only supported in tun mode"):
        load(MODE="tap")


def test_tun_rejects_hwaddr():
    with pytest.raises(exceptions.ConfigError, match="only supported in tap mode"):
        load(TUN_HWADDR="02:00:00:00:00:01")


@pytest.mark.parametrize("key", ["MODE", "TUN_ADDRESS", "PEER_ADDRESS", "PEER_PORT"])
def test_required(key):
    with pytest.raises(exceptions.ConfigError, match=key):
        load(**{key: None})


@pytest.mark.parametrize("key, value", [
    ("MODE", "tunnel"),
    ("TUN_ADDRESS", "10.8.0.256"),
    ("TUN_NETMASK", "255.0.255.0"),
    ("MTU", 20),
    ("MTU", "1500"),
    ("LISTEN_PORT", 0),
    ("PEER_PORT", 70000),
    ("PEER_PORT", True),
    ("PEER_ADDRESS", "peer.example.com"),
    ("TUN_DEVICE_NAME", "a-very-long-name0"),
    ("TUN_DEVICE_NAME", "tun 0"),
    ("TUN_HWADDR", "02:00:00"),
    ("PACKET_INFO", "yes"),
    ("LOG_LEVEL", "VERBOSE"),
    ("NICE_LEVEL", 40),
    ("SOCKET_BUFFER_SIZE", -1),
])
def test_invalid_values(key, value):
    with pytest.raises(exceptions.ConfigError, match=key):
        load(**{key: value})


def test_unknown_key():
    with pytest.raises(exceptions.ConfigError, match="Unknown configuration key: ENCRYPTION_KEY"):
        load(ENCRYPTION_KEY="00" * 32)


def test_comment_keys_are_ignored():
    cfg = load(_comment_peer="the other end")

    assert cfg.get_peer_address() == "203.0.113.5"


def test_load_from_file_with_overrides(tmp_path):
    config_file = tmp_path / "pmvpn.json"
    config_file.write_text(json.dumps(dict(TUN_SETTINGS, MTU=1400, LISTEN_PORT=5000)))

    config.Config().load_from_file(str(config_file), {"LISTEN_PORT": 6000})

    assert config.Config().get_mtu() == 1400
    assert config.Config().get_listen_port() == 6000


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_load_from_bad_file(tmp_path, content):
    config_file = tmp_path / "pmvpn.json"
    config_file.write_text(content)

    with pytest.raises(exceptions.ConfigError):
        config.Config().load_from_file(str(config_file))


def test_load_from_missing_file(tmp_path):
    with pytest.raises(exceptions.ConfigError, match="Failed to load"):
        config.Config().load_from_file(str(tmp_path / "missing.json"))
