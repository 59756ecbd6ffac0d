"""In-process fake Source RCON server for end-to-end client tests."""

from __future__ import annotations

import socket
import struct
import threading
from collections.abc import Callable, Iterator

import pytest

from srcrcon.protocol import AUTH_FAILED_ID, Packet, PacketType


def _echo(command: str) -> str:
    if command.startswith("echo "):
        return command[len("echo ") :]
    return f"Unknown command \"{command}\""


class FakeRconServer:
    """Answers AUTH, EXEC_COMMAND and mirror packets like a Source server.

    Responses longer than fragment_size are split into several packets, each
    sent with its own write, so the client has to reassemble them.
    """

    def __init__(
        self,
        password: str | None = None,
        *,
        fragment_size: int = 4096,
        answer_mirror: bool = True,
        late_mirror_reply: bool = False,
        handler: Callable[[str], str] = _echo,
    ) -> None:
        self.password = password
        self.fragment_size = fragment_size
        self.answer_mirror = answer_mirror
        self.late_mirror_reply = late_mirror_reply
        self.handler = handler
        self.received: list[Packet] = []
        self.connections = 0
        self._lock = threading.Lock()
        self._clients: list[socket.socket] = []
        self._listener = socket.create_server(("127.0.0.1", 0))
        self.port = self._listener.getsockname()[1]
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

    def packets_of(self, packet_type: int) -> list[Packet]:
        with self._lock:
            return [p for p in self.received if p.packet_type == packet_type]

    def stop(self) -> None:
        self._listener.close()
        with self._lock:
            for conn in self._clients:
                conn.close()

    def _accept_loop(self) -> None:
        while True:
            try:
                conn, _addr = self._listener.accept()
            except OSError:
                return
            with self._lock:
                self.connections += 1
                self._clients.append(conn)
            threading.Thread(target=self._serve, args=(conn,), daemon=True).start()

    def _serve(self, conn: socket.socket) -> None:
        try:
            while True:
                packet = self._read_packet(conn)
                if packet is None:
                    return
                with self._lock:
                    self.received.append(packet)
                self._respond(conn, packet)
        except OSError:
            return

    def _respond(self, conn: socket.socket, packet: Packet) -> None:
        if packet.packet_type == PacketType.AUTH:
            conn.sendall(Packet(packet.request_id, PacketType.RESPONSE_VALUE).encode())
            accepted = packet.body.decode() == self.password
            verdict_id = packet.request_id if accepted else AUTH_FAILED_ID
            conn.sendall(Packet(verdict_id, PacketType.AUTH_RESPONSE).encode())
        elif packet.packet_type == PacketType.EXEC_COMMAND:
            output = self.handler(packet.body.decode()).encode()
            for start in range(0, len(output), self.fragment_size):
                chunk = output[start : start + self.fragment_size]
                conn.sendall(
                    Packet(packet.request_id, PacketType.RESPONSE_VALUE, chunk).encode()
                )
        elif self.answer_mirror:
            conn.sendall(Packet(packet.request_id, PacketType.RESPONSE_VALUE).encode())
            if self.late_mirror_reply:
                trailer = Packet(
                    packet.request_id, PacketType.RESPONSE_VALUE, b"\x00\x01\x00\x00"
                )
                conn.sendall(trailer.encode())

    @staticmethod
    def _read_packet(conn: socket.socket) -> Packet | None:
        prefix = _read_exact(conn, 4)
        if prefix is None:
            return None
        (size,) = struct.unpack("<i", prefix)
        rest = _read_exact(conn, size)
        if rest is None:
            return None
        return Packet.decode(prefix + rest)


def _read_exact(conn: socket.socket, num_bytes: int) -> bytes | None:
    data = b""
    while len(data) < num_bytes:
        chunk = conn.recv(num_bytes - len(data))
        if not chunk:
            return None
        data += chunk
    return data


@pytest.fixture
def rcon_server() -> Iterator[Callable[..., FakeRconServer]]:
    """Factory fixture starting fake servers that are stopped after the test."""
    servers: list[FakeRconServer] = []

    def start(*args, **kwargs) -> FakeRconServer:
        server = FakeRconServer(*args, **kwargs)
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.stop()
