import io
import time

import pytest

from webappserver.request import HttpRequest, RequestStatus
from webappserver.response import HttpResponse
from webappserver.settings import Settings
from webappserver.staticfiles import StaticFileController


def make_request(path):
    request = HttpRequest(Settings())
    stream = io.BytesIO(b"GET " + path + b" HTTP/1.1\r\n\r\n")
    while request.status not in (RequestStatus.COMPLETE, RequestStatus.ABORT):
        request.read_from(stream)
    return request


def serve(controller, path):
    out = io.BytesIO()
    response = HttpResponse(out)
    with make_request(path) as request:
        controller.service(request, response)
    if not response.has_sent_last_part:
        response.write(b"", True)
    return response, out.getvalue()


def body_of(raw):
    head, _, rest = raw.partition(b"\r\n\r\n")
    if b"Transfer-Encoding: chunked" not in head:
        return rest
    body = b""
    while True:
        size_line, _, rest = rest.partition(b"\r\n")
        size = int(size_line, 16)
        if size == 0:
            return body
        body += rest[:size]
        rest = rest[size + 2:]


def controller_for(tmp_path, **values):
    return StaticFileController(Settings({"path": str(tmp_path), **values}))


def test_serves_file_content(tmp_path):
    (tmp_path / "notes.txt").write_bytes(b"some text")
    response, raw = serve(controller_for(tmp_path), b"/notes.txt")
    assert response.status_code == 200
    assert body_of(raw) == b"some text"
    assert response.headers[b"Content-Type"] == b"text/plain; charset=UTF-8"
    assert response.headers[b"Cache-Control"] == b"max-age=60"


def test_missing_file_gives_404(tmp_path):
    response, raw = serve(controller_for(tmp_path), b"/missing.html")
    assert response.status_code == 404
    assert body_of(raw) == b"404 not found"


def test_parent_directory_is_forbidden(tmp_path):
    response, raw = serve(controller_for(tmp_path), b"/../secret.txt")
    assert response.status_code == 403
    assert body_of(raw) == b"403 forbidden"


def test_unreadable_existing_path_is_forbidden(tmp_path):
    (tmp_path / "sub" / "index.html").mkdir(parents=True)
    response, raw = serve(controller_for(tmp_path), b"/sub")
    assert response.status_code == 403
    assert body_of(raw) == b"403 forbidden"


def test_directory_serves_index_html(tmp_path):
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "index.html").write_bytes(b"<p>index</p>")
    response, raw = serve(controller_for(tmp_path), b"/docs")
    assert body_of(raw) == b"<p>index</p>"
    assert response.headers[b"Content-Type"] == b"text/html; charset=UTF-8"


def test_cached_file_is_served_from_cache(tmp_path):
    target = tmp_path / "page.css"
    target.write_bytes(b"first")
    controller = controller_for(tmp_path, cacheTime="0")
    _, raw1 = serve(controller, b"/page.css")
    target.write_bytes(b"second")
    response, raw2 = serve(controller, b"/page.css")
    assert body_of(raw1) == body_of(raw2) == b"first"
    assert response.headers[b"Content-Type"] == b"text/css"


def test_cache_entry_expires(tmp_path):
    target = tmp_path / "a.js"
    target.write_bytes(b"old")
    controller = controller_for(tmp_path, cacheTime="1")
    serve(controller, b"/a.js")
    target.write_bytes(b"new")
    time.sleep(0.02)
    _, raw = serve(controller, b"/a.js")
    assert body_of(raw) == b"new"


def test_large_file_is_not_cached(tmp_path):
    target = tmp_path / "big.txt"
    target.write_bytes(b"abcdef")
    controller = controller_for(tmp_path, maxCachedFileSize="3")
    _, raw1 = serve(controller, b"/big.txt")
    target.write_bytes(b"ghijkl")
    _, raw2 = serve(controller, b"/big.txt")
    assert body_of(raw1) == b"abcdef"
    assert body_of(raw2) == b"ghijkl"


def test_file_larger_than_cache_is_not_kept(tmp_path):
    target = tmp_path / "x.txt"
    target.write_bytes(b"12345")
    controller = controller_for(tmp_path, cacheSize="2")
    serve(controller, b"/x.txt")
    target.write_bytes(b"67890")
    _, raw = serve(controller, b"/x.txt")
    assert body_of(raw) == b"67890"


def test_unknown_type_has_no_content_type(tmp_path):
    (tmp_path / "data.bin").write_bytes(b"\x00\x01")
    response, raw = serve(controller_for(tmp_path), b"/data.bin")
    assert b"Content-Type" not in response.headers
    assert body_of(raw) == b"\x00\x01"


@pytest.mark.parametrize(
    "name, expected",
    [
        ("a.png", "image/png"),
        ("a.jpg", "image/jpeg"),
        ("a.gif", "image/gif"),
        ("a.pdf", "application/pdf"),
        ("a.htm", "text/html; charset=UTF-8"),
        ("a.svg", "image/svg+xml"),
        ("a.woff", "font/woff"),
        ("a.woff2", "font/woff2"),
        ("a.ttf", "application/x-font-ttf"),
        ("a.eot", "application/vnd.ms-fontobject"),
        ("a.otf", "application/font-otf"),
        (b"a.js", "text/javascript"),
        ("a.unknown", None),
    ],
)
def test_content_type_for(tmp_path, name, expected):
    assert controller_for(tmp_path).content_type_for(name) == expected


def test_encoding_setting_is_used(tmp_path):
    controller = controller_for(tmp_path, encoding="ISO-8859-1")
    assert controller.content_type_for("a.html") == "text/html; charset=ISO-8859-1"


def test_relative_docroot_follows_config_file(tmp_path):
    settings = Settings({"path": "docs"}, file_name=tmp_path / "app.ini")
    assert StaticFileController(settings).docroot == str(tmp_path / "docs")