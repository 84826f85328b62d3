import errno
import socket
import loguru

import exceptions


def is_peer(address, peer):
    """Exact (host, port) match against the one authorized peer."""
    return tuple(address[:2]) == tuple(peer)


class UDPTransport:
    """
    Bound, non-blocking UDP endpoint. Every datagram carries exactly one
    packet, there is no framing on the wire.
    """

    def __init__(self, host, port, buffer_size=None):
        self._host = host
        self._port = port
        sock = self._udp_open(buffer_size)
        sock.setblocking(False)
        self._sock = sock

    def _udp_open(self, buffer_size):
        loguru.logger.info(f"Opening UDP socket on {self._host}:{self._port}")

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if buffer_size:
                self._set_buffer_size(sock, buffer_size)
            sock.bind((self._host, self._port))
        except OSError as e:
            sock.close()
            raise exceptions.BindError(e.errno, f"Cannot bind UDP socket to {self._host}:{self._port}: {e.strerror}") from e
        return sock

    def _set_buffer_size(self, sock, buffer_size):
        for option, label in ((socket.SO_SNDBUF, "send"), (socket.SO_RCVBUF, "receive")):
            try:
                sock.setsockopt(socket.SOL_SOCKET, option, buffer_size)
            except OSError as e:
                loguru.logger.warning(f"Failed to set UDP {label} buffer size: {e}")
            actual = sock.getsockopt(socket.SOL_SOCKET, option)
            loguru.logger.info(f"UDP {label} buffer size: {actual} bytes")

    def _socket(self):
        if self._sock is None:
            raise OSError(errno.EBADF, "UDP socket is closed")
        return self._sock

    @property
    def local_address(self):
        return self._socket().getsockname()

    @property
    def closed(self):
        return self._sock is None

    def receive(self, size):
        """One datagram as (data, (host, port)), None if nothing is queued."""
        try:
            data, address = self._socket().recvfrom(size)
        except BlockingIOError:
            return None
        loguru.logger.debug(f"Read {len(data)} bytes from UDP socket from {address}")
        return data, address

    def send_to(self, data, host, port):
        """Send one datagram. Returns the number of bytes sent, None if the socket buffer is full."""
        loguru.logger.debug(f"Writing {len(data)} bytes to UDP socket to {(host, port)}")
        try:
            sent = self._socket().sendto(data, (host, port))
        except BlockingIOError:
            loguru.logger.debug("UDP send buffer full (EAGAIN), data not written")
            return None
        if sent != len(data):
            raise OSError(errno.EMSGSIZE, f"Datagram truncated: {sent} of {len(data)} bytes sent")
        return sent

    def fileno(self):
        return self._socket().fileno()

    def close(self):
        if self._sock is None:
            return
        loguru.logger.info(f"Closing UDP socket on {self._host}:{self._port}")
        self._sock.close()
        self._sock = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
