"""High-level RCON client with connection management."""

from __future__ import annotations

import logging
import socket
import threading
from typing import TYPE_CHECKING

from srcrcon.errors import (
    AuthenticationFailed,
    AuthSequenceError,
    ConnectionError,  # noqa: A004
    TruncatedFrame,
)
from srcrcon.protocol import (
    AUTH_FAILED_ID,
    MAX_PACKET_SIZE,
    MIN_PACKET_SIZE,
    SIZE_PREFIX,
    Packet,
    PacketType,
    new_request_id,
    read_size,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

log = logging.getLogger(__name__)

DEFAULT_PORT = 27015
# request_id + type must always be present after the size prefix
_MIN_FRAME_SIZE = 8
# incoming bodies may use the full 4096 bytes
_MAX_FRAME_SIZE = MAX_PACKET_SIZE + MIN_PACKET_SIZE


class RconClient:
    """A Source RCON session over a single TCP connection.

    The connection is dialed lazily on the first command and authenticated
    before it if a password is set. Every public method holds the session
    lock for its whole duration, so concurrent callers queue instead of
    interleaving packets on the wire.
    """

    def __init__(  # noqa: PLR0913
        self,
        host: str,
        port: int = DEFAULT_PORT,
        password: str | None = None,
        timeout: float = 10.0,
        *,
        id_generator: Callable[[], int] = new_request_id,
    ) -> None:
        self._host = host
        self._port = port
        self._password = password
        self.timeout = timeout
        self._next_id = id_generator
        self._sock: socket.socket | None = None
        self._authenticated = False
        self._stale_mirror_id: int | None = None
        self._lock = threading.Lock()

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def connected(self) -> bool:
        """Whether the client has an active socket connection."""
        return self._sock is not None

    @property
    def authenticated(self) -> bool:
        """Whether the current connection has completed the handshake."""
        return self._authenticated

    def __enter__(self) -> RconClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def exec_command(self, command: str) -> bytes:
        """Send a command and return the full response body.

        Uses the mirror technique for multi-packet responses: after the real
        command, an empty RESPONSE_VALUE packet with its own id is sent. The
        server answers in order, so once the reply to the mirror arrives every
        fragment of the command's response has already been received.

        Some servers answer the mirror with a second, non-empty packet that
        arrives after the loop has ended. Packets carrying the previous
        command's mirror id are skipped so they never leak into this result.

        Raises:
            PacketTooLarge: If the command does not fit in one packet. Nothing
                is sent in that case.
            ConnectionError: On any socket failure, including timeouts.
            AuthSequenceError: If a handshake reply id does not correlate.
            AuthenticationFailed: If the server rejects the password.
            TruncatedFrame: If the server announces an impossible frame size.
        """
        with self._lock:
            request = Packet(
                request_id=self._next_id(),
                packet_type=PacketType.EXEC_COMMAND,
                body=command.encode("utf-8"),
            )
            mirror = Packet(
                request_id=self._new_mirror_id(request.request_id),
                packet_type=PacketType.RESPONSE_VALUE,
            )
            data = request.encode() + mirror.encode()

            if self._sock is None:
                self._connect()
            if self._password and not self._authenticated:
                self._authenticate(self._password)

            log.debug(
                "Sending command id=%d (%d bytes), mirror id=%d",
                request.request_id,
                len(request.body),
                mirror.request_id,
            )
            self._send(data)

            fragments: list[bytes] = []
            while True:
                response = self._recv()
                if response.request_id == mirror.request_id:
                    break
                if response.request_id == self._stale_mirror_id:
                    log.debug(
                        "Skipping late reply to mirror id=%d", response.request_id
                    )
                    continue
                log.debug(
                    "Received fragment id=%d (%d bytes)",
                    response.request_id,
                    len(response.body),
                )
                fragments.append(response.body.rstrip())

            self._stale_mirror_id = mirror.request_id
            return b"".join(fragments)

    def close(self) -> None:
        """Close the TCP connection.

        Closing a session that is not connected does nothing. The session is
        reset even if closing the socket fails, in which case ConnectionError
        is raised afterwards.
        """
        with self._lock:
            self._reset()

    def _new_mirror_id(self, request_id: int) -> int:
        mirror_id = self._next_id()
        while mirror_id == request_id:
            mirror_id = self._next_id()
        return mirror_id

    def _connect(self) -> None:
        """Establish a TCP connection to the RCON server."""
        log.debug("Connecting to %s:%d", self._host, self._port)
        try:
            sock = socket.create_connection(
                (self._host, self._port), timeout=self.timeout
            )
        except OSError as e:
            msg = f"Failed to connect to {self._host}:{self._port}: {e}"
            raise ConnectionError(msg) from e
        sock.settimeout(self.timeout)
        self._sock = sock
        self._authenticated = False

    def _authenticate(self, password: str) -> None:
        """Run the two-reply authentication handshake.

        The server first echoes an empty RESPONSE_VALUE carrying the AUTH
        packet's id, then sends the verdict. A verdict id of -1 means the
        password was rejected.
        """
        auth = Packet(
            request_id=self._next_id(),
            packet_type=PacketType.AUTH,
            body=password.encode("utf-8"),
        )
        self._send(auth.encode())

        ack = self._recv()
        if ack.request_id != auth.request_id:
            msg = (
                f"Authentication reply id {ack.request_id} does not match"
                f" request id {auth.request_id}"
            )
            raise AuthSequenceError(msg)

        verdict = self._recv()
        if verdict.request_id == AUTH_FAILED_ID:
            msg = "Authentication failed: incorrect RCON password"
            raise AuthenticationFailed(msg)
        if verdict.request_id != auth.request_id:
            msg = (
                f"Authentication verdict id {verdict.request_id} does not match"
                f" request id {auth.request_id}"
            )
            raise AuthSequenceError(msg)

        log.debug("Authenticated with %s:%d", self._host, self._port)
        self._authenticated = True

    def _reset(self) -> None:
        """Drop the socket and authentication state, surfacing close errors."""
        sock = self._sock
        self._sock = None
        self._authenticated = False
        self._stale_mirror_id = None
        if sock is None:
            return
        log.debug("Closing connection to %s:%d", self._host, self._port)
        try:
            sock.close()
        except OSError as e:
            msg = f"Failed to close connection: {e}"
            raise ConnectionError(msg) from e

    def _abort(self) -> None:
        """Reset after an I/O failure, keeping the original error primary."""
        try:
            self._reset()
        except ConnectionError:
            log.debug("Error closing socket after failure", exc_info=True)

    def _send(self, data: bytes) -> None:
        """Write encoded packets to the socket."""
        if self._sock is None:
            msg = "Not connected"
            raise ConnectionError(msg)
        try:
            self._sock.sendall(data)
        except OSError as e:
            self._abort()
            msg = f"Failed to send data: {e}"
            raise ConnectionError(msg) from e

    def _recv(self) -> Packet:
        """Receive a single packet from the socket."""
        prefix = self._recv_exact(SIZE_PREFIX)
        size = read_size(prefix)
        if size < _MIN_FRAME_SIZE or size > _MAX_FRAME_SIZE:
            self._abort()
            msg = f"Invalid frame size {size}"
            raise TruncatedFrame(msg)
        return Packet.decode(prefix + self._recv_exact(size))

    def _recv_exact(self, num_bytes: int) -> bytes:
        """Read exactly num_bytes from the socket, handling partial reads."""
        if self._sock is None:
            msg = "Not connected"
            raise ConnectionError(msg)

        data = bytearray()
        while len(data) < num_bytes:
            try:
                chunk = self._sock.recv(num_bytes - len(data))
            except TimeoutError as e:
                self._abort()
                msg = f"Timed out waiting for the server after {self.timeout}s"
                raise ConnectionError(msg) from e
            except OSError as e:
                self._abort()
                msg = f"Connection lost: {e}"
                raise ConnectionError(msg) from e

            if not chunk:
                self._abort()
                msg = "Connection closed by server"
                raise ConnectionError(msg)

            data.extend(chunk)

        return bytes(data)
