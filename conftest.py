import socket
import threading

import pytest

import file_server


def split_response(raw: bytes):
    """Split a serialized response into (status, lower-cased headers, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("iso-8859-1").split("\r\n")
    status = int(lines[0].split(" ", 2)[1])
    headers = {}
    for line in lines[1:]:
        k, _, v = line.partition(":")
        headers[k.strip().lower()] = v.strip()
    return status, headers, body


def raw_request(port: int, request: bytes) -> bytes:
    """Send request bytes as-is and read until the server closes."""
    with socket.create_connection(("127.0.0.1", port), timeout=5) as s:
        s.sendall(request)
        chunks = []
        while True:
            data = s.recv(4096)
            if not data:
                break
            chunks.append(data)
    return b"".join(chunks)


@pytest.fixture
def site(tmp_path):
    """Small document root: index page, a docs/ subdirectory and a few typed files."""
    (tmp_path / "index.html").write_text("<h1>Hi</h1>")
    (tmp_path / "style.css").write_text("body { color: red; }")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x01binary")
    (tmp_path / "notes.zzqx").write_text("unknown extension")
    (tmp_path / "LICENSE").write_text("no extension")
    (tmp_path / "hello world.txt").write_text("spaced name")
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "readme.md").write_text("# Readme")
    return tmp_path


@pytest.fixture
def reply(site):
    """Run the handler without a socket: reply('/path') -> (status, headers, body)."""
    def _reply(path, base_dir=None):
        return split_response(file_server.build_reply(str(base_dir or site), path))
    return _reply


@pytest.fixture
def start_server(site):
    """Start serve_forever on an ephemeral port; returns (port, thread). Stopped at teardown."""
    running = []

    def _start(use_threading=True, wrap=None):
        server_socket = file_server.create_server_socket("127.0.0.1", 0)
        port = server_socket.getsockname()[1]
        stop_event = threading.Event()
        listener = wrap(server_socket) if wrap else server_socket
        thread = threading.Thread(
            target=file_server.serve_forever,
            args=(listener, str(site)),
            kwargs={"use_threading": use_threading, "stop_event": stop_event},
            daemon=True,
        )
        thread.start()
        running.append((server_socket, port, stop_event, thread))
        return port, thread

    yield _start

    for server_socket, port, stop_event, thread in running:
        stop_event.set()
        # Wake the blocking accept so the loop sees the event
        try:
            socket.create_connection(("127.0.0.1", port), timeout=1).close()
        except OSError:
            pass
        thread.join(timeout=2)
        server_socket.close()


@pytest.fixture
def live_server(start_server):
    """Threaded server; returns (base_url, port)."""
    port, _ = start_server()
    return f"http://127.0.0.1:{port}", port


@pytest.fixture
def send_raw():
    """send_raw(port, request_bytes) -> (status, headers, body)."""
    def _send(port, request):
        return split_response(raw_request(port, request))
    return _send


@pytest.fixture
def parse():
    return split_response
