#! /usr/bin/env python3

import argparse
import os
import signal
import sys
import loguru
import psutil

import config
import const
import engine
import exceptions
import transport
import tun


class MainWorker:
    """
    Owns the device and the UDP socket of one tunnel. Both are released on
    every way out of the `with` block, and on failure during construction.
    """

    def __init__(self):
        cfg = config.Config()
        settings = cfg.get_device_settings()
        packet_info = cfg.get_packet_info()
        self._peer = (cfg.get_peer_address(), cfg.get_peer_port())
        self._device_read_size = settings.read_size(packet_info)
        self.engine_i = None
        self.transport_i = None

        self.tun_i = tun.TunTapDevice(name=cfg.get_device_name(), flags=settings.flags(packet_info),
                                      dev=cfg.get_device_path())
        try:
            settings.apply(self.tun_i)
            self.transport_i = transport.UDPTransport(cfg.get_listen_address(), cfg.get_listen_port(),
                                                      cfg.get_socket_buffer_size())
        except BaseException:
            self.tun_i.close()
            raise

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Called automatically when leaving 'with' block"""
        loguru.logger.info("Cleaning up...")
        self.tun_i.close()
        if self.transport_i is not None:
            self.transport_i.close()
        if self.engine_i is not None:
            self.engine_i.log_stats()
        run_command("exit", config.Config().get_run_command_on_exit())
        return False

    def run(self):
        run_command("setup", config.Config().get_run_command_after_tun_ready())
        self.engine_i = engine.ForwardingEngine(self.tun_i, self.transport_i, self._peer,
                                                device_read_size=self._device_read_size)
        self.engine_i.run()


def run_command(label, command):
    if not command:
        return
    loguru.logger.info(f"Running {label} command: {command}")
    ret_code = os.system(command)
    if ret_code != 0:
        loguru.logger.error(f"{label.capitalize()} command exited with code {ret_code}")
    else:
        loguru.logger.info(f"{label.capitalize()} command exited with code {ret_code}")


def nice_process(nice_level):
    """Renice the tunnel process, a failure only costs scheduling priority."""
    try:
        process = psutil.Process()
        previous = process.nice()
        process.nice(nice_level)
    except (psutil.Error, OSError) as e:
        loguru.logger.warning(f"Cannot change nice level to {nice_level}: {e}")
        return
    loguru.logger.info(f"Nice level changed from {previous} to {nice_level}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Point to point TUN/TAP tunnel over UDP")
    parser.add_argument('-c', '--config', dest='config_file', metavar='FILE',
                        help='JSON configuration file, command line options override it')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--tun', dest='MODE', action='store_const', const=const.MODE_TUN,
                      help='IP tunnel (TUN device)')
    mode.add_argument('--tap', dest='MODE', action='store_const', const=const.MODE_TAP,
                      help='ethernet tunnel (TAP device)')
    parser.add_argument('--tun-addr', dest='TUN_ADDRESS', metavar='ADDR',
                        help='set tunnel local address')
    parser.add_argument('--tun-dstaddr', dest='TUN_DSTADDR', metavar='ADDR',
                        help='set tunnel destination address (tun only)')
    parser.add_argument('--tun-netmask', dest='TUN_NETMASK', metavar='MASK',
                        help=f'set tunnel netmask [{const.DEFAULT_NETMASK}]')
    parser.add_argument('--tun-mtu', dest='MTU', type=int, metavar='MTU',
                        help=f'set tunnel MTU [{const.DEFAULT_MTU}]')
    parser.add_argument('--tun-name', dest='TUN_DEVICE_NAME', metavar='NAME',
                        help='set tunnel interface name [kernel assigned]')
    parser.add_argument('--local-addr', dest='LISTEN_ADDRESS', metavar='ADDR',
                        help=f'set local address [{const.DEFAULT_LISTEN_ADDRESS}]')
    parser.add_argument('--local-port', dest='LISTEN_PORT', type=int, metavar='PORT',
                        help=f'set local port [{const.DEFAULT_LISTEN_PORT}]')
    parser.add_argument('--remote-addr', dest='PEER_ADDRESS', metavar='ADDR',
                        help='set remote address')
    parser.add_argument('--remote-port', dest='PEER_PORT', type=int, metavar='PORT',
                        help='set remote port')
    parser.add_argument('--log-level', dest='LOG_LEVEL', metavar='LEVEL',
                        help=f'set log level [{const.DEFAULT_LOG_LEVEL}]')
    return parser.parse_args(argv)


def load_config(args):
    overrides = {key: value for key, value in vars(args).items() if key != 'config_file' and value is not None}
    if args.config_file:
        config.Config().load_from_file(args.config_file, overrides)
    else:
        config.Config().load_settings(overrides)


def _sigterm_handler(signum, frame):
    loguru.logger.info("Received termination signal, exiting...")
    sys.exit(0)


def main(argv=None):
    args = parse_args(argv)
    try:
        load_config(args)
    except exceptions.ConfigError as e:
        loguru.logger.error(f"Configuration error: {e}")
        return 1

    # Set log level
    log_level = config.Config().get_log_level()
    loguru.logger.remove()
    loguru.logger.add(sys.stderr, level=log_level)

    try:
        nice_level = config.Config().get_nice_level()
        if nice_level is not None:
            nice_process(nice_level)
        worker = MainWorker()
    except (exceptions.DeviceError, exceptions.BindError) as e:
        loguru.logger.error(f"Failed to start tunnel: {e}")
        return 1
    except KeyboardInterrupt:
        loguru.logger.info("Received keyboard interrupt during startup, exiting...")
        return 0

    signal.signal(signal.SIGTERM, _sigterm_handler)
    with worker:
        try:
            worker.run()
        except KeyboardInterrupt:
            loguru.logger.info("Received keyboard interrupt, exiting...")
            return 0
        except OSError as e:
            loguru.logger.error(f"Tunnel terminated: {e}")
            return 1
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    # interrupt while parsing arguments or loading the config file
    except KeyboardInterrupt:
        loguru.logger.info("Received keyboard interrupt, exiting...")
        sys.exit(0)
