import errno
import fcntl
import ipaddress
import os
import struct
import loguru

import common
import const
import control
import exceptions


class TunTapDevice:
    """
    One Linux TUN (IP packets) or TAP (ethernet frames) interface.

    The interface exists as long as the file descriptor is open (unless made
    persistent). Every read returns exactly one packet and every write must
    contain exactly one packet, the kernel never splits or merges them.
    Address, netmask, MTU and link state are applied through DeviceControl.
    """

    def __init__(self, name='', flags=const.LINUX_IFF_TUN, dev=const.DEFAULT_DEVICE_PATH, device_control=None):
        if not flags & (const.LINUX_IFF_TUN | const.LINUX_IFF_TAP):
            raise exceptions.DeviceCreationError("Bad flags: either IFF_TUN or IFF_TAP must be set")
        if flags & const.LINUX_IFF_TUN and flags & const.LINUX_IFF_TAP:
            raise exceptions.DeviceCreationError("Bad flags: IFF_TUN and IFF_TAP could not both be set")
        if len(name.encode()) >= const.LINUX_IFNAMSIZ:
            raise exceptions.DeviceCreationError("Interface name too long")

        self._flags = flags
        self._control = device_control or control.DeviceControl()
        self._address = None
        self._netmask = None
        self._dstaddr = None
        self._tun, self._name = self._tun_open(name, flags, dev)
        loguru.logger.info(f"Created {self.mode.upper()} device {self._name}")

    def _tun_open(self, name, flags, dev):
        loguru.logger.debug(f"Opening {dev} for device {name or '(kernel assigned)'}")
        try:
            fd = os.open(dev, os.O_RDWR | os.O_NONBLOCK)
        except OSError as e:
            raise exceptions.DeviceCreationError(e.errno, f"Cannot open {dev}: {e.strerror}") from e

        ifr = struct.pack(const.LINUX_IFREQ_FORMAT, name.encode(), flags)
        try:
            ifr = fcntl.ioctl(fd, const.LINUX_TUNSETIFF, ifr)
        except OSError as e:
            os.close(fd)
            raise exceptions.DeviceCreationError(e.errno, f"Cannot create interface: {e.strerror}") from e

        assigned_name = struct.unpack(const.LINUX_IFREQ_FORMAT, ifr)[0].rstrip(b'\x00').decode()
        return os.fdopen(fd, 'r+b', 0), assigned_name  # 0 = unbuffered

    @property
    def name(self):
        return self._name

    @property
    def flags(self):
        return self._flags

    @property
    def mode(self):
        return const.MODE_TAP if self._flags & const.LINUX_IFF_TAP else const.MODE_TUN

    @property
    def closed(self):
        return self._tun is None

    def _file(self):
        if self._tun is None:
            raise exceptions.DeviceError(errno.EBADF, f"Device {self._name} is closed")
        return self._tun

    def fileno(self):
        return self._file().fileno()

    # Packet I/O

    def read(self, size):
        """Read one packet of at most `size` bytes, None if nothing is queued."""
        tun = self._file()
        try:
            data = tun.read(size)
        except BlockingIOError:
            data = None
        except OSError as e:
            raise exceptions.DeviceError(e.errno, f"Read from {self._name} failed: {e.strerror}") from e

        if data is None:
            loguru.logger.debug("No data available (EAGAIN)")
            return None
        loguru.logger.debug(f"Read {len(data)} bytes from {self._name}")
        return data

    def write(self, data):
        """Write one packet. Returns the number of bytes written, None if the device is not writable yet."""
        tun = self._file()
        try:
            written = tun.write(data)
        except BlockingIOError:
            written = None
        except OSError as e:
            raise exceptions.DeviceError(e.errno, f"Write to {self._name} failed: {e.strerror}") from e

        if written is None:
            loguru.logger.debug("No space available to write (EAGAIN), data not written")
            return None
        if written != len(data):
            raise exceptions.DeviceError(errno.EIO, f"Short write to {self._name}: {written} of {len(data)} bytes")
        loguru.logger.debug(f"Wrote {written} bytes to {self._name}")
        return written

    # Interface configuration

    def _configure(self, field, func, *args):
        if self._tun is None:
            raise exceptions.ConfigurationError(field, "device is closed")
        try:
            func(*args)
        except (ValueError, exceptions.ControlError) as e:
            raise exceptions.ConfigurationError(field, e) from e

    def _link_info(self, field):
        self._file()
        try:
            return self._control.show(self._name)
        except exceptions.ControlError as e:
            raise exceptions.DeviceError(f"Cannot read {field} of {self._name}: {e}") from e

    def _inet_info(self, field):
        for addr_info in self._link_info(field).get('addr_info', []):
            if addr_info.get('family') == 'inet':
                return addr_info
        return {}

    def _apply_address(self, address, netmask, dstaddr):
        if address is None:
            loguru.logger.debug(f"No address set on {self._name} yet, keeping netmask / peer for later")
            return
        prefixlen = common.netmask_to_prefixlen(netmask) if netmask else 32
        loguru.logger.info(f"Setting address of {self._name} to {address}/{prefixlen}" + (f" peer {dstaddr}" if dstaddr else ""))
        self._control.set_address(self._name, address, prefixlen, dstaddr)

    def _set_addr(self, value):
        address = str(ipaddress.IPv4Address(value))
        self._apply_address(address, self._netmask, self._dstaddr)
        self._address = address

    def _set_dstaddr(self, value):
        if self.mode != const.MODE_TUN:
            raise ValueError("destination address is only supported on TUN devices")
        dstaddr = str(ipaddress.IPv4Address(value))
        self._apply_address(self._address, self._netmask, dstaddr)
        self._dstaddr = dstaddr

    def _set_netmask(self, value):
        netmask = common.prefixlen_to_netmask(common.netmask_to_prefixlen(value))
        self._apply_address(self._address, netmask, self._dstaddr)
        self._netmask = netmask

    def _set_mtu(self, value):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"MTU must be a positive integer, got {value!r}")
        loguru.logger.info(f"Setting MTU of {self._name} to {value}")
        self._control.set_mtu(self._name, value)

    def _set_hwaddr(self, value):
        if self.mode != const.MODE_TAP:
            raise ValueError("hardware address is only supported on TAP devices")
        if not common.is_mac_address(value):
            raise ValueError(f"Bad MAC address {value!r}")
        loguru.logger.info(f"Setting hardware address of {self._name} to {value}")
        self._control.set_hwaddr(self._name, value)

    @property
    def addr(self):
        return self._inet_info('addr').get('local')

    @addr.setter
    def addr(self, value):
        self._configure('addr', self._set_addr, value)

    @property
    def dstaddr(self):
        return self._inet_info('dstaddr').get('address')

    @dstaddr.setter
    def dstaddr(self, value):
        self._configure('dstaddr', self._set_dstaddr, value)

    @property
    def netmask(self):
        prefixlen = self._inet_info('netmask').get('prefixlen')
        if prefixlen is None:
            return None
        return common.prefixlen_to_netmask(prefixlen)

    @netmask.setter
    def netmask(self, value):
        self._configure('netmask', self._set_netmask, value)

    @property
    def mtu(self):
        return self._link_info('mtu').get('mtu')

    @mtu.setter
    def mtu(self, value):
        self._configure('mtu', self._set_mtu, value)

    @property
    def hwaddr(self):
        return self._link_info('hwaddr').get('address')

    @hwaddr.setter
    def hwaddr(self, value):
        self._configure('hwaddr', self._set_hwaddr, value)

    def configure(self, addr=None, dstaddr=None, netmask=None, mtu=None):
        """Apply the given settings, the address last so it is set only once with its netmask and peer."""
        if mtu is not None:
            self.mtu = mtu
        if netmask is not None:
            self.netmask = netmask
        if dstaddr is not None:
            self.dstaddr = dstaddr
        if addr is not None:
            self.addr = addr

    def up(self):
        loguru.logger.info(f"Bringing up {self._name}")
        self._configure('state', self._control.set_link, self._name, True)

    activate = up

    def down(self):
        loguru.logger.info(f"Bringing down {self._name}")
        self._configure('state', self._control.set_link, self._name, False)

    def persist(self, flag=True):
        """Keep the interface after the descriptor is closed (or undo it)."""
        fd = self.fileno()
        try:
            fcntl.ioctl(fd, const.LINUX_TUNSETPERSIST, int(bool(flag)))
        except OSError as e:
            raise exceptions.DeviceError(e.errno, f"Cannot set persist on {self._name}: {e.strerror}") from e

    def mq_attach(self, flag=True):
        """Attach (or detach) this queue of an IFF_MULTI_QUEUE device."""
        fd = self.fileno()
        queue_flags = const.LINUX_IFF_ATTACH_QUEUE if flag else const.LINUX_IFF_DETACH_QUEUE
        ifr = struct.pack(const.LINUX_IFREQ_FORMAT, b'', queue_flags)
        try:
            fcntl.ioctl(fd, const.LINUX_TUNSETQUEUE, ifr)
        except OSError as e:
            raise exceptions.DeviceError(e.errno, f"Cannot change queue state of {self._name}: {e.strerror}") from e

    def close(self):
        if self._tun is None:
            return
        loguru.logger.info(f"Closing {self.mode.upper()} device {self._name}")
        try:
            self._tun.close()
        except OSError as e:
            loguru.logger.debug(f"Error closing device {self._name}: {e}")
        finally:
            self._tun = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self):
        state = "closed" if self._tun is None else "open"
        return f"<TunTapDevice {self._name} mode={self.mode} {state}>"


class DeviceSettings:
    """Settings shared by both device modes, see TunSettings / TapSettings."""
    mode = None
    base_flag = None
    header_size = 0

    def __init__(self, addr, netmask=const.DEFAULT_NETMASK, mtu=const.DEFAULT_MTU):
        self.addr = addr
        self.netmask = netmask
        self.mtu = mtu

    def flags(self, packet_info=False):
        flags = self.base_flag
        if not packet_info:
            flags |= const.LINUX_IFF_NO_PI
        return flags

    def read_size(self, packet_info=False):
        """Largest packet a read can return: MTU plus link / packet info headers."""
        size = self.mtu + self.header_size
        if packet_info:
            size += const.PACKET_INFO_HEADER_SIZE
        return size

    def configure(self, device):
        device.configure(addr=self.addr, netmask=self.netmask, mtu=self.mtu)

    def apply(self, device):
        self.configure(device)
        device.up()


class TunSettings(DeviceSettings):
    """Point to point IP tunnel, the peer address is mandatory."""
    mode = const.MODE_TUN
    base_flag = const.LINUX_IFF_TUN

    def __init__(self, addr, dstaddr, netmask=const.DEFAULT_NETMASK, mtu=const.DEFAULT_MTU):
        super().__init__(addr, netmask, mtu)
        self.dstaddr = dstaddr

    def configure(self, device):
        device.configure(addr=self.addr, dstaddr=self.dstaddr, netmask=self.netmask, mtu=self.mtu)

    def __repr__(self):
        return f"TunSettings(addr={self.addr!r}, dstaddr={self.dstaddr!r}, netmask={self.netmask!r}, mtu={self.mtu!r})"


class TapSettings(DeviceSettings):
    """Ethernet bridge-like tunnel, there is no peer address on a TAP device."""
    mode = const.MODE_TAP
    base_flag = const.LINUX_IFF_TAP
    header_size = const.VLAN_ETH_HEADER_SIZE

    def __init__(self, addr, netmask=const.DEFAULT_NETMASK, mtu=const.DEFAULT_MTU, hwaddr=None):
        super().__init__(addr, netmask, mtu)
        self.hwaddr = hwaddr

    def configure(self, device):
        super().configure(device)
        if self.hwaddr:
            device.hwaddr = self.hwaddr

    def __repr__(self):
        return f"TapSettings(addr={self.addr!r}, netmask={self.netmask!r}, mtu={self.mtu!r}, hwaddr={self.hwaddr!r})"
