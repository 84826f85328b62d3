import json
import ipaddress
import loguru
import re

import common
import const
import exceptions
import tun


class ConfigChecks:
    @staticmethod
    def check_ipv4_valid(ipv4):
        # literal addresses only, the peer check compares strings
        try:
            return str(ipaddress.IPv4Address(ipv4)) == ipv4
        except ValueError as e:
            loguru.logger.error(f"Not an IPv4 address: {e}")
            return False

    @staticmethod
    def check_port_valid(port):
        if isinstance(port, bool) or not isinstance(port, int):
            loguru.logger.error(f"Port must be an integer, got {type(port).__name__}")
            return False

        return 0 < port < 65536

    @staticmethod
    def mtu_valid(mtu):
        if isinstance(mtu, bool) or not isinstance(mtu, int):
            loguru.logger.error(f"MTU must be an integer, got {type(mtu).__name__}")
            return False

        return 68 <= mtu <= const.MAX_DATAGRAM_SIZE

    @staticmethod
    def ipv4_netmask_valid(netmask):
        if not isinstance(netmask, str):
            loguru.logger.error(f"Netmask must be a string, got {type(netmask).__name__}")
            return False
        try:
            common.netmask_to_prefixlen(netmask)
        except ValueError as e:
            loguru.logger.error(f"Netmask validation error: {e}")
            return False

        return True

    @staticmethod
    def validate_mode(mode):
        return mode in (const.MODE_TUN, const.MODE_TAP)

    @staticmethod
    def validate_tun_name(name):
        if not isinstance(name, str):
            loguru.logger.error(f"TUN device name must be a string, got {type(name).__name__}")
            return False
        if len(name) >= const.LINUX_IFNAMSIZ:
            return False
        if not re.match(const.TUN_NAME_ALLOWED_REGEX, name):
            return False

        return True

    @staticmethod
    def validate_buffer_size(size):
        if isinstance(size, bool) or not isinstance(size, int):
            loguru.logger.error(f"SOCKET_BUFFER_SIZE must be an integer, got {type(size).__name__}")
            return False

        return size > 0

    @staticmethod
    def validate_loguru_log_level(level):
        if not isinstance(level, str):
            return False
        try:
            loguru.logger.level(level)
        except ValueError:
            loguru.logger.error(f"Unknown log level {level!r}")
            return False
        return True

    @staticmethod
    def validate_nice_level(nice_level):
        if isinstance(nice_level, bool) or not isinstance(nice_level, int):
            loguru.logger.error(f"NICE_LEVEL must be an integer, got {type(nice_level).__name__}")
            return False

        if nice_level < -20 or nice_level > 19:
            return False

        return True


@common.singleton
class Config:
    def __init__(self):
        self._settings = {}

    def load_from_file(self, config_file, overrides=None):
        loguru.logger.info(f"Loading configuration from {config_file}")

        try:
            with open(config_file, 'r') as f:
                settings = json.load(f)
        except (OSError, ValueError) as e:
            loguru.logger.error(f"Failed to load configuration file: {e}")
            raise exceptions.ConfigError(f"Failed to load configuration file: {e}") from e

        if not isinstance(settings, dict):
            raise exceptions.ConfigError("Configuration file must contain a JSON object")

        settings.update(overrides or {})
        self.load_settings(settings)

    def load_settings(self, settings):
        self._settings = {key: value for key, value in settings.items() if value is not None}
        self._validate_config()

    def _validate_config(self):
        self._check_for_unknown_settings()
        self.get_device_settings()
        self.get_device_name()
        self.get_device_path()
        self.get_packet_info()
        self.get_listen_address()
        self.get_listen_port()
        self.get_peer_address()
        self.get_peer_port()
        self.get_socket_buffer_size()
        self.get_log_level()
        self.get_nice_level()

    def _check_for_unknown_settings(self):
        for key in self._settings.keys():
            if key not in const.CONFIG_KNOWN_VALUES and not key.startswith(const.CONFIG_COMMENTS_PREFIXES):
                loguru.logger.error(f"Unknown configuration key: {key}")
                raise exceptions.ConfigError(f"Unknown configuration key: {key}")

    def _get_value(self, config_key, default=None, required=False):
        try:
            value = self._settings[config_key]
            return value
        except KeyError:
            if required:
                loguru.logger.error(f"{config_key} not set in configuration")
                raise exceptions.ConfigError(f"{config_key} not set in configuration")
            else:
                loguru.logger.debug(f"{config_key} not set in configuration, using default {default}")
                return default

    def _get_checked(self, config_key, check, default=None, required=False):
        value = self._get_value(config_key, default=default, required=required)
        if value is None:
            return None

        if not check(value):
            loguru.logger.error(f"Invalid {config_key} in configuration")
            raise exceptions.ConfigError(f"Invalid {config_key} in configuration")

        return value

    # Start of getter methods
    def get_mode(self):
        return self._get_checked("MODE", ConfigChecks.validate_mode, required=True)

    def get_tun_address(self):
        return self._get_checked("TUN_ADDRESS", ConfigChecks.check_ipv4_valid, required=True)

    def get_tun_dstaddr(self):
        return self._get_checked("TUN_DSTADDR", ConfigChecks.check_ipv4_valid)

    def get_tun_netmask(self):
        return self._get_checked("TUN_NETMASK", ConfigChecks.ipv4_netmask_valid, default=const.DEFAULT_NETMASK)

    def get_tun_hwaddr(self):
        return self._get_checked("TUN_HWADDR", common.is_mac_address)

    def get_mtu(self):
        return self._get_checked("MTU", ConfigChecks.mtu_valid, default=const.DEFAULT_MTU)

    def get_device_settings(self):
        """TunSettings or TapSettings, options of the other mode are rejected."""
        mode = self.get_mode()
        dstaddr = self.get_tun_dstaddr()
        hwaddr = self.get_tun_hwaddr()

        if mode == const.MODE_TUN:
            if dstaddr is None:
                loguru.logger.error("TUN_DSTADDR not set in configuration, required in tun mode")
                raise exceptions.ConfigError("TUN_DSTADDR not set in configuration, required in tun mode")
            if hwaddr is not None:
                raise exceptions.ConfigError("TUN_HWADDR is only supported in tap mode")
            return tun.TunSettings(self.get_tun_address(), dstaddr, self.get_tun_netmask(), self.get_mtu())

        if dstaddr is not None:
            raise exceptions.ConfigError("TUN_DSTADDR is only supported in tun mode")
        return tun.TapSettings(self.get_tun_address(), self.get_tun_netmask(), self.get_mtu(), hwaddr)

    def get_device_name(self):
        return self._get_checked("TUN_DEVICE_NAME", ConfigChecks.validate_tun_name, default="")

    def get_device_path(self):
        return self._get_checked("TUN_DEVICE_PATH", lambda path: isinstance(path, str) and path != "",
                                 default=const.DEFAULT_DEVICE_PATH)

    def get_packet_info(self):
        return self._get_checked("PACKET_INFO", lambda value: isinstance(value, bool), default=False)

    def get_listen_address(self):
        return self._get_checked("LISTEN_ADDRESS", ConfigChecks.check_ipv4_valid, default=const.DEFAULT_LISTEN_ADDRESS)

    def get_listen_port(self):
        return self._get_checked("LISTEN_PORT", ConfigChecks.check_port_valid, default=const.DEFAULT_LISTEN_PORT)

    def get_peer_address(self):
        return self._get_checked("PEER_ADDRESS", ConfigChecks.check_ipv4_valid, required=True)

    def get_peer_port(self):
        return self._get_checked("PEER_PORT", ConfigChecks.check_port_valid, required=True)

    def get_socket_buffer_size(self):
        return self._get_checked("SOCKET_BUFFER_SIZE", ConfigChecks.validate_buffer_size)

    def get_log_level(self):
        return self._get_checked("LOG_LEVEL", ConfigChecks.validate_loguru_log_level, default=const.DEFAULT_LOG_LEVEL)

    def get_nice_level(self):
        return self._get_checked("NICE_LEVEL", ConfigChecks.validate_nice_level)

    def get_run_command_after_tun_ready(self):
        return self._get_value("RUN_COMMAND_AFTER_TUN_READY")

    def get_run_command_on_exit(self):
        return self._get_value("RUN_COMMAND_ON_EXIT")
