import socket

import pytest

from webappserver.handler import HttpRequestHandler
from webappserver.listener import HttpListener, main
from webappserver.settings import Settings

TOO_MANY = b"HTTP/1.1 503 too many connections\r\nConnection: close\r\n\r\nToo many connections\r\n"


class HelloHandler(HttpRequestHandler):
    def service(self, request, response):
        response.write(b"hello " + request.path, True)


def _settings(**values):
    base = {"host": "127.0.0.1", "port": 0, "cleanupInterval": 3600000}
    base.update(values)
    return Settings(base)


def _read_all(sock):
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def _request(port, data):
    with socket.create_connection(("127.0.0.1", port), timeout=5) as client:
        client.sendall(data)
        return _read_all(client)


@pytest.fixture
def listener_factory():
    listeners = []

    def make(handler=None, **values):
        listener = HttpListener(_settings(**values), handler or HelloHandler())
        listeners.append(listener)
        return listener

    yield make
    for listener in listeners:
        listener.close()


def test_serves_request(listener_factory):
    listener = listener_factory()
    port = listener.server_address[1]
    reply = _request(port, b"GET /index HTTP/1.1\r\nConnection: close\r\n\r\n")
    assert reply.startswith(b"HTTP/1.1 200 OK\r\n")
    assert b"Connection: close\r\n" in reply
    assert reply.endswith(b"\r\n\r\nhello /index")


def test_default_handler_answers_501(listener_factory):
    listener = listener_factory(handler=HttpRequestHandler())
    port = listener.server_address[1]
    reply = _request(port, b"GET / HTTP/1.0\r\n\r\n")
    assert reply.startswith(b"HTTP/1.1 501 not implemented\r\n")
    assert reply.endswith(b"501 not implemented")


def test_rejects_when_pool_is_full(listener_factory):
    listener = listener_factory(maxThreads=0)
    port = listener.server_address[1]
    reply = _request(port, b"GET / HTTP/1.1\r\n\r\n")
    assert reply == TOO_MANY


def test_incoming_connection_rejected_directly(listener_factory):
    listener = listener_factory(maxThreads=0)
    server_side, client_side = socket.socketpair()
    with client_side:
        listener.incoming_connection(server_side)
        client_side.settimeout(5)
        reply = _read_all(client_side)
    assert reply == TOO_MANY
    assert listener.is_listening is True


def test_close_and_listen_again(listener_factory):
    listener = listener_factory()
    assert listener.is_listening is True
    listener.close()
    assert listener.is_listening is False
    with pytest.raises(RuntimeError):
        listener.server_address
    listener.listen()
    assert listener.is_listening is True
    reply = _request(listener.server_address[1], b"GET /again HTTP/1.1\r\nConnection: close\r\n\r\n")
    assert reply.endswith(b"hello /again")


def test_bind_failure_raises(listener_factory):
    first = listener_factory()
    port = first.server_address[1]
    with pytest.raises(OSError):
        HttpListener(_settings(port=port), HelloHandler())


def test_main_rejects_bad_port():
    with pytest.raises(SystemExit):
        main(["--port", "notanumber"])


def test_main_rejects_missing_config(tmp_path):
    with pytest.raises(SystemExit):
        main([str(tmp_path / "missing.ini")])