import io

import pytest

from webappserver.cookie import HttpCookie
from webappserver.response import HttpResponse, ResponseStateError


@pytest.fixture
def stream():
    return io.BytesIO()


def _body(data):
    return data.split(b"\r\n\r\n", 1)[1]


def test_single_write_sets_content_length(stream):
    response = HttpResponse(stream)
    response.write(b"hello", True)
    assert stream.getvalue() == b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\n\r\nhello"
    assert response.has_sent_last_part


def test_chunked_mode(stream):
    response = HttpResponse(stream)
    response.write(b"hello")
    response.write(b"", True)
    data = stream.getvalue()
    assert b"Transfer-Encoding: chunked\r\n" in data
    assert _body(data) == b"5\r\nhello\r\n0\r\n\r\n"
    assert response.headers[b"Transfer-Encoding"] == b"chunked"


def test_chunk_size_is_hex(stream):
    response = HttpResponse(stream)
    response.write(b"x" * 26)
    assert _body(stream.getvalue()).startswith(b"1a\r\n")


def test_connection_close_disables_chunking(stream):
    response = HttpResponse(stream)
    response.set_header("Connection", "close")
    response.write(b"ab")
    response.write(b"cd", True)
    data = stream.getvalue()
    assert b"Transfer-Encoding" not in data
    assert b"Content-Length" not in data
    assert _body(data) == b"abcd"


def test_lowercase_connection_close_disables_chunking(stream):
    response = HttpResponse(stream)
    response.set_header(b"connection", b"Close")
    response.write(b"ab")
    assert b"Transfer-Encoding" not in response.headers


def test_headers_are_sorted(stream):
    response = HttpResponse(stream)
    response.set_header(b"X-B", b"2")
    response.set_header(b"X-A", b"1")
    response.write(b"", True)
    data = stream.getvalue()
    assert data.index(b"X-A: 1\r\n") < data.index(b"X-B: 2\r\n")


def test_int_header_value(stream):
    response = HttpResponse(stream)
    response.set_header("X-Count", 42)
    assert response.headers[b"X-Count"] == b"42"


def test_status_line(stream):
    response = HttpResponse(stream)
    response.set_status(404, "not found")
    response.write("404 not found", True)
    assert response.status_code == 404
    assert stream.getvalue().startswith(b"HTTP/1.1 404 not found\r\n")


def test_cookie_is_sent(stream):
    response = HttpResponse(stream)
    cookie = HttpCookie(b"sessionid", b"token", 60)
    response.set_cookie(cookie)
    response.write(b"", True)
    assert b"Set-Cookie: " + cookie.to_bytes() + b"\r\n" in stream.getvalue()
    assert response.cookies == {b"sessionid": cookie}


def test_cookie_without_name_is_ignored(stream):
    response = HttpResponse(stream)
    response.set_cookie(HttpCookie())
    assert response.cookies == {}


def test_redirect(stream):
    response = HttpResponse(stream)
    response.redirect(b"/login")
    data = stream.getvalue()
    assert response.status_code == 303
    assert data.startswith(b"HTTP/1.1 303 See Other\r\n")
    assert b"Location: /login\r\n" in data
    assert _body(data) == b"Redirect"


def test_set_header_after_write_raises(stream):
    response = HttpResponse(stream)
    response.write(b"x")
    with pytest.raises(ResponseStateError):
        response.set_header(b"X", b"y")


def test_set_cookie_after_write_raises(stream):
    response = HttpResponse(stream)
    response.write(b"x")
    with pytest.raises(ResponseStateError):
        response.set_cookie(HttpCookie(b"a", b"b"))


def test_write_after_last_part_raises(stream):
    response = HttpResponse(stream)
    response.write(b"x", True)
    with pytest.raises(ResponseStateError):
        response.write(b"y")


def test_closed_stream(stream):
    response = HttpResponse(stream)
    stream.close()
    assert response.is_connected is False
    response.write(b"data", True)
    assert response.has_sent_last_part
    assert response.headers[b"Content-Length"] == b"4"


def test_is_connected_on_open_stream(stream):
    assert HttpResponse(stream).is_connected is True