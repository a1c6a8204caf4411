import io

from webappserver.handler import HttpRequestHandler
from webappserver.request import HttpRequest, RequestStatus
from webappserver.response import HttpResponse
from webappserver.settings import Settings


def _request(raw: bytes) -> HttpRequest:
    request = HttpRequest(Settings())
    stream = io.BytesIO(raw)
    while request.read_from(stream) not in (RequestStatus.COMPLETE, RequestStatus.ABORT):
        pass
    return request


def test_default_service_answers_501():
    request = _request(b"GET /index.html HTTP/1.1\r\n\r\n")
    out = io.BytesIO()
    response = HttpResponse(out)
    HttpRequestHandler().service(request, response)
    data = out.getvalue()
    assert data.startswith(b"HTTP/1.1 501 not implemented\r\n")
    assert data.endswith(b"\r\n\r\n501 not implemented")
    assert response.status_code == 501


def test_default_service_finishes_response():
    request = _request(b"POST /x HTTP/1.0\r\n\r\n")
    out = io.BytesIO()
    response = HttpResponse(out)
    HttpRequestHandler().service(request, response)
    assert response.has_sent_last_part
    body = b"501 not implemented"
    assert response.headers[b"Content-Length"] == str(len(body)).encode()


def test_subclass_overrides_service():
    class Hello(HttpRequestHandler):
        def service(self, request, response):
            response.write(b"hello " + request.path, True)

    request = _request(b"GET /world HTTP/1.1\r\n\r\n")
    out = io.BytesIO()
    Hello().service(request, HttpResponse(out))
    assert out.getvalue().startswith(b"HTTP/1.1 200 OK\r\n")
    assert out.getvalue().endswith(b"hello /world")