import json
import loguru
import sh

import exceptions


class DeviceControl:
    """
    Kernel side configuration of a network interface, done through iproute2.

    The TUN/TAP file descriptor only moves packets, everything else (addresses,
    MTU, link state) is set on the interface by name.
    """

    def _ip(self, *args):
        loguru.logger.debug(f"Running: ip {' '.join(str(a) for a in args)}")
        try:
            return sh.ip(*args)
        except sh.ErrorReturnCode as e:
            stderr = e.stderr.decode(errors="replace").strip()
            raise exceptions.ControlError(f"ip {' '.join(str(a) for a in args)} failed: {stderr}") from e
        except sh.CommandNotFound as e:
            raise exceptions.ControlError("ip command not found, is iproute2 installed?") from e

    def show(self, device):
        output = self._ip('-j', 'addr', 'show', 'dev', device)
        try:
            info = json.loads(str(output))
        except ValueError as e:
            raise exceptions.ControlError(f"Cannot parse ip output for {device}: {e}") from e
        if not info:
            raise exceptions.ControlError(f"Device {device} not found")
        return info[0]

    @staticmethod
    def _addr_args(device, address, prefixlen, peer=None):
        if peer:
            return ('addr', 'add', address, 'peer', f'{peer}/{prefixlen}', 'dev', device)
        return ('addr', 'add', f'{address}/{prefixlen}', 'dev', device)

    def set_address(self, device, address, prefixlen, peer=None):
        # one IPv4 address per tunnel device, replace whatever was there
        previous = [entry for entry in self.show(device).get('addr_info', []) if entry.get('family') == 'inet']
        self._ip('-4', 'addr', 'flush', 'dev', device)
        try:
            self._ip(*self._addr_args(device, address, prefixlen, peer))
        except exceptions.ControlError:
            self._restore_addresses(device, previous)
            raise

    def _restore_addresses(self, device, addresses):
        for entry in addresses:
            try:
                self._ip(*self._addr_args(device, entry['local'], entry['prefixlen'], entry.get('address')))
            except (exceptions.ControlError, KeyError) as e:
                loguru.logger.error(f"Cannot restore address {entry.get('local')} on {device}: {e}")

    def set_mtu(self, device, mtu):
        self._ip('link', 'set', 'dev', device, 'mtu', str(mtu))

    def set_hwaddr(self, device, hwaddr):
        self._ip('link', 'set', 'dev', device, 'address', hwaddr)

    def set_link(self, device, up):
        self._ip('link', 'set', 'dev', device, 'up' if up else 'down')
