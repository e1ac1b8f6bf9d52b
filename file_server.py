import socket
import sys
import os
import html
import mimetypes
import urllib.parse
import threading
from datetime import datetime

DEFAULT_PORT = 8080
DEFAULT_DIRECTORY = "."
INDEX_FILE = "index.html"
DEFAULT_MIME = "text/plain"

MAX_REQUEST_BYTES = 8192
RECV_SIZE = 1024

REASONS = {200: "OK", 404: "Not Found", 500: "Internal Server Error"}


def log(message: str):
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {message}")


def build_response(status_code: int, reason: str, headers: dict, body: bytes) -> bytes:
    """Build a raw HTTP/1.1 response (status line + headers + body)."""
    lines = [f"HTTP/1.1 {status_code} {reason}"]
    for k, v in headers.items():
        lines.append(f"{k}: {v}")
    lines.append(f"Content-Length: {len(body)}")
    lines.append("Connection: close")
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head.encode() + (body or b"")


def text_response(status_code: int) -> bytes:
    """Fixed plain-text error page, e.g. '404 Not Found'."""
    reason = REASONS[status_code]
    body = f"{status_code} {reason}".encode()
    return build_response(status_code, reason, {"Content-Type": "text/plain; charset=utf-8"}, body)


def not_found_response() -> bytes:
    return text_response(404)


def internal_error_response() -> bytes:
    return text_response(500)


def resolve_path(base_dir: str, url_path: str) -> tuple:
    """Map a decoded URL path onto the filesystem.

    Returns (candidate_path, rel) where rel is url_path with a single leading
    slash removed. An empty rel resolves to the index file.
    """
    rel = url_path[1:] if url_path.startswith("/") else url_path
    return os.path.join(base_dir, rel if rel else INDEX_FILE), rel


def generate_directory_listing(dir_path: str, url_path: str) -> str:
    """Generate an HTML listing of the direct entries of dir_path.

    Raises OSError when the directory cannot be read.
    """
    title = html.escape(f"Index of /{url_path}")
    parts = [
        f"<html><head><title>{title}</title></head><body>",
        f"<h2>{title}</h2><ul>",
    ]
    with os.scandir(dir_path) as entries:
        for entry in entries:
            # Names that are not valid UTF-8 are listed lossily
            name = os.fsencode(entry.name).decode("utf-8", errors="replace")
            href = f"{url_path}/{name}" if url_path else name
            parts.append(f"<li><a href=\"{html.escape(href)}\">{html.escape(name)}</a></li>")
    parts.append("</ul></body></html>")
    return "".join(parts)


def guess_content_type(path: str) -> str:
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or DEFAULT_MIME


def build_reply(base_dir: str, raw_path: str) -> bytes:
    """Produce the full response for one request path. Never raises for filesystem errors."""
    path, rel = resolve_path(base_dir, raw_path)

    if os.path.isdir(path):
        try:
            listing = generate_directory_listing(path, rel)
        except OSError:
            return internal_error_response()
        return build_response(200, "OK", {"Content-Type": "text/html"}, listing.encode("utf-8"))

    try:
        with open(path, "rb") as f:
            body = f.read()
    except (OSError, ValueError):
        # ValueError: the decoded path holds a NUL byte
        return not_found_response()
    return build_response(200, "OK", {"Content-Type": guess_content_type(path)}, body)


def serve_path(client_socket, base_dir: str, raw_path: str):
    """Serve a file or directory listing for the requested path."""
    response = build_reply(base_dir, raw_path)
    client_socket.sendall(response)
    return response


def read_request(client_socket) -> str:
    """Read the request head (up to the blank line, EOF, or MAX_REQUEST_BYTES)."""
    data = b""
    while b"\r\n\r\n" not in data and len(data) < MAX_REQUEST_BYTES:
        chunk = client_socket.recv(RECV_SIZE)
        if not chunk:
            break
        data += chunk
    return data.decode(errors="ignore")


def parse_request_target(request: str) -> str:
    try:
        return request.split()[1]
    except IndexError:
        return "/"


def decode_url_path(target: str) -> str:
    """Drop query/fragment and percent-decode the path part of a request target."""
    try:
        path = urllib.parse.urlsplit(target).path
    except ValueError:
        path = target.split("?", 1)[0].split("#", 1)[0]
    return urllib.parse.unquote(path)


def handle_client(client_socket, addr, directory):
    """Handle one connection: read, answer once, close."""
    try:
        request = read_request(client_socket)
        if not request:
            return
        target = parse_request_target(request)
        response = serve_path(client_socket, directory, decode_url_path(target))
        status = response.split(b" ", 2)[1].decode()
        request_line = request.split("\r\n", 1)[0]
        log(f"{addr[0]}:{addr[1]} \"{request_line}\" {status}")
    except Exception as e:
        log(f"Error handling client {addr}: {e}")
    finally:
        client_socket.close()


def create_server_socket(host: str, port: int):
    server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    # Without SO_REUSEADDR a restart fails while old connections sit in TIME_WAIT
    server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        server_socket.bind((host, port))
        server_socket.listen(10)
    except OSError:
        server_socket.close()
        raise
    return server_socket


def serve_forever(server_socket, directory, use_threading=True, stop_event=None):
    """
    Accept connections until stop_event is set.

    Args:
        server_socket: Bound, listening socket
        directory: Root directory to serve, passed unchanged to every handler
        use_threading: If True, handle each connection on its own daemon thread
        stop_event: Optional threading.Event; the loop exits after the next accept once set
    """
    while stop_event is None or not stop_event.is_set():
        try:
            client_socket, addr = server_socket.accept()
        except OSError as e:
            if stop_event is not None and stop_event.is_set():
                break
            log(f"Accept failed: {e}")
            continue
        if stop_event is not None and stop_event.is_set():
            client_socket.close()
            break

        if use_threading:
            thread = threading.Thread(target=handle_client, args=(client_socket, addr, directory))
            thread.daemon = True
            thread.start()
        else:
            handle_client(client_socket, addr, directory)


def run_server(directory, host="0.0.0.0", port=DEFAULT_PORT, use_threading=True):
    try:
        server_socket = create_server_socket(host, port)
    except OSError as e:
        print(f"Could not bind {host}:{port}: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Serving '{directory}' on http://{host}:{port}")

    try:
        serve_forever(server_socket, directory, use_threading=use_threading)
    except KeyboardInterrupt:
        print("\nShutting down server...")
    finally:
        server_socket.close()


def parse_args(argv):
    """Return (port, directory) from the positional arguments."""
    port = DEFAULT_PORT
    directory = DEFAULT_DIRECTORY
    if len(argv) > 0:
        try:
            port = int(argv[0])
        except ValueError:
            raise ValueError(f"Invalid port: {argv[0]}") from None
        if not 0 <= port <= 65535:
            raise ValueError(f"Invalid port: {argv[0]}")
    if len(argv) > 1:
        directory = argv[1]
    return port, directory


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    try:
        port, directory = parse_args(argv)
    except ValueError as e:
        print(e)
        print("Usage: python file_server.py [port] [directory]")
        sys.exit(1)

    run_server(directory, port=port)


if __name__ == "__main__":
    main()
