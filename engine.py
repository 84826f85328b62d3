import errno
import select
import loguru

import const
import transport


def is_interrupted(exc):
    return isinstance(exc, OSError) and exc.errno == errno.EINTR


class PendingPayload:
    """
    The single in-flight packet of one direction, either empty or full.
    The source side is read again only after the packet was handed off.
    """

    def __init__(self, name):
        self.name = name
        self._payload = None
        self.packets = 0
        self.bytes = 0

    @property
    def full(self):
        return self._payload is not None

    @property
    def payload(self):
        return self._payload

    def put(self, payload):
        if self._payload is not None:
            raise RuntimeError(f"{self.name}: packet already pending")
        self._payload = payload

    def done(self):
        """Destination accepted the packet, free the slot."""
        self.packets += 1
        self.bytes += len(self._payload)
        self._payload = None

    def __repr__(self):
        state = f"full({len(self._payload)} bytes)" if self._payload is not None else "empty"
        return f"<PendingPayload {self.name} {state}>"


class ForwardingEngine:
    """
    Relays packets between a TUN/TAP device and a UDP peer.

    Each direction holds at most one packet: the source is polled for reading
    only while its slot is empty and the destination for writing only while it
    is full, so packets leave in the order they arrived and never twice.
    """

    def __init__(self, device, udp, peer, device_read_size=const.DEFAULT_MTU,
                 socket_read_size=const.MAX_DATAGRAM_SIZE, select_fn=select.select):
        self._device = device
        self._udp = udp
        self._peer = tuple(peer)
        self._device_read_size = device_read_size
        self._socket_read_size = socket_read_size
        self._select = select_fn
        self.to_udp = PendingPayload("device->udp")
        self.to_device = PendingPayload("udp->device")
        self.dropped = 0

    def interest(self):
        """(readers, writers) to wait on for the current slot state."""
        readers, writers = [], []
        if self.to_device.full:
            writers.append(self._device)
        else:
            readers.append(self._udp)
        if self.to_udp.full:
            writers.append(self._udp)
        else:
            readers.append(self._device)
        return readers, writers

    def step(self, timeout=None):
        """One wait + transfer round. Returns False if the wait timed out."""
        readers, writers = self.interest()
        readable, writable, _ = self._select(readers, writers, [], timeout)
        if not readable and not writable:
            return False

        if self._device in readable:
            self._read_device()
        if self._udp in readable:
            self._read_udp()
        if self._device in writable:
            self._write_device()
        if self._udp in writable:
            self._write_udp()
        return True

    def _read_device(self):
        data = self._device.read(self._device_read_size)
        if not data:
            if data is not None:
                loguru.logger.debug("Empty read from device, nothing to forward")
            return
        loguru.logger.debug(f"Data from device: {len(data)} bytes")
        self.to_udp.put(data)

    def _read_udp(self):
        received = self._udp.receive(self._socket_read_size)
        if received is None:
            return
        data, address = received
        if not transport.is_peer(address, self._peer):
            self.dropped += 1
            loguru.logger.warning(f"Dropping {len(data)} bytes from unknown sender {address[0]}:{address[1]}")
            return
        if not data:
            loguru.logger.debug("Empty datagram from peer, nothing to forward")
            return
        loguru.logger.debug(f"Data from UDP: {len(data)} bytes")
        self.to_device.put(data)

    def _write_device(self):
        if not self.to_device.full:
            return
        if self._device.write(self.to_device.payload) is None:
            return
        self.to_device.done()

    def _write_udp(self):
        if not self.to_udp.full:
            return
        if self._udp.send_to(self.to_udp.payload, *self._peer) is None:
            return
        self.to_udp.done()

    def run(self):
        """Forward until a non-recoverable error, which is re-raised."""
        loguru.logger.info(f"Forwarding between {self._device} and peer {self._peer[0]}:{self._peer[1]}")
        while True:
            try:
                self.step()
            except OSError as e:
                if is_interrupted(e):
                    loguru.logger.debug(f"Interrupted ({e}), retrying")
                    continue
                loguru.logger.error(f"Forwarding stopped: {e}")
                self.log_stats()
                raise

    def log_stats(self):
        loguru.logger.info(
            f"Forwarded {self.to_udp.packets} packets ({self.to_udp.bytes} bytes) to peer, "
            f"{self.to_device.packets} packets ({self.to_device.bytes} bytes) to device, "
            f"dropped {self.dropped} datagrams from unknown senders")
