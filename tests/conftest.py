import errno
import fcntl
import os
import socket
import struct
import pytest

import config
import const
import control
import exceptions

FAKE_DEVICE_PATH = "/fake/dev/net/tun"


class FakeControl:
    """Records what would have been run with `ip`."""

    def __init__(self):
        self.calls = []
        self.fail = None
        self.info = {
            "ifname": "tun0",
            "mtu": 1500,
            "flags": ["POINTOPOINT", "NOARP"],
            "addr_info": [],
        }

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail == name:
            raise exceptions.ControlError(f"{name} failed")

    def names(self):
        return [call[0] for call in self.calls]

    def show(self, device):
        self._record("show", device)
        return self.info

    def set_address(self, device, address, prefixlen, peer=None):
        self._record("set_address", device, address, prefixlen, peer)

    def set_mtu(self, device, mtu):
        self._record("set_mtu", device, mtu)

    def set_hwaddr(self, device, hwaddr):
        self._record("set_hwaddr", device, hwaddr)

    def set_link(self, device, up):
        self._record("set_link", device, up)


class FakeTunDriver:
    """
    Stands in for /dev/net/tun: every open returns one end of a datagram
    socketpair, the other end plays the kernel network stack.
    """

    def __init__(self):
        self.kernel = {}
        self.opened = []
        self.flags = None
        self.persist = None
        self.queue_flags = None
        self.fail_errno = None

    def open(self, flags):
        kernel_side, user_side = socket.socketpair(socket.AF_UNIX, socket.SOCK_DGRAM)
        fd = user_side.detach()
        os.set_blocking(fd, not flags & os.O_NONBLOCK)
        self.kernel[fd] = kernel_side
        self.opened.append(kernel_side)
        return fd

    def handles(self, fd):
        return fd in self.kernel

    def ioctl(self, fd, request, arg):
        if request == const.LINUX_TUNSETIFF:
            if self.fail_errno is not None:
                raise OSError(self.fail_errno, os.strerror(self.fail_errno))
            name, flags = struct.unpack(const.LINUX_IFREQ_FORMAT, arg)
            self.flags = flags
            name = name.rstrip(b"\x00") or (b"tap0" if flags & const.LINUX_IFF_TAP else b"tun0")
            return struct.pack(const.LINUX_IFREQ_FORMAT, name, flags)
        if request == const.LINUX_TUNSETPERSIST:
            self.persist = arg
            return 0
        if request == const.LINUX_TUNSETQUEUE:
            self.queue_flags = struct.unpack(const.LINUX_IFREQ_FORMAT, arg)[1]
            return arg
        raise OSError(errno.EINVAL, os.strerror(errno.EINVAL))

    def kernel_side(self):
        """The kernel end of the most recently opened device."""
        return self.opened[-1]

    def close(self):
        for sock in self.opened:
            sock.close()


@pytest.fixture(autouse=True)
def reset_config():
    config.Config()._settings = {}
    yield
    config.Config()._settings = {}


@pytest.fixture
def fake_control(monkeypatch):
    fake = FakeControl()
    monkeypatch.setattr(control, "DeviceControl", lambda: fake)
    return fake


@pytest.fixture
def tun_driver(monkeypatch):
    driver = FakeTunDriver()
    real_open = os.open
    real_ioctl = fcntl.ioctl

    def fake_open(path, flags, *args, **kwargs):
        if path == FAKE_DEVICE_PATH:
            return driver.open(flags)
        return real_open(path, flags, *args, **kwargs)

    def fake_ioctl(fd, request, arg=0, *args):
        if driver.handles(fd):
            return driver.ioctl(fd, request, arg)
        return real_ioctl(fd, request, arg, *args)

    monkeypatch.setattr(os, "open", fake_open)
    monkeypatch.setattr(fcntl, "ioctl", fake_ioctl)
    yield driver
    driver.close()


class PacketDevice:
    """Datagram socketpair end with the device read/write interface."""

    def __init__(self, sock):
        self.sock = sock
        self.sock.setblocking(False)
        self.closed = False
        self.writes = 0

    def read(self, size):
        try:
            return self.sock.recv(size)
        except BlockingIOError:
            return None

    def write(self, data):
        self.writes += 1
        try:
            return self.sock.send(data)
        except BlockingIOError:
            return None

    def fileno(self):
        return self.sock.fileno()

    def close(self):
        self.closed = True
        self.sock.close()


@pytest.fixture
def packet_device():
    """(device, kernel) pair, packets sent on `kernel` are read from `device`."""
    kernel, user = socket.socketpair(socket.AF_UNIX, socket.SOCK_DGRAM)
    kernel.settimeout(1.0)
    device = PacketDevice(user)
    yield device, kernel
    kernel.close()
    if not device.closed:
        device.close()


@pytest.fixture
def peer_socket():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(1.0)
    yield sock
    sock.close()


@pytest.fixture
def device_path():
    return FAKE_DEVICE_PATH
