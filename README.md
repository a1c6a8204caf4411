# webappserver

A small, self-contained HTTP/1.1 server for embedding in applications.
It needs nothing beyond the Python standard library.

- `webappserver.listener.HttpListener` accepts TCP (optionally TLS)
  connections and hands each one to a pooled connection handler thread.
  Connections beyond the pool limit are answered with
  `503 too many connections`.
- `webappserver.pool.ConnectionHandlerPool` grows on demand up to
  `maxThreads` handlers and closes one surplus idle handler per
  `cleanupInterval`, keeping `minThreads` idle ones.
- `webappserver.connection.ConnectionHandler` reads requests from one
  connection at a time (several requests per connection are answered in
  order), applies the read timeout and answers oversized requests with
  `413 entity too large`.
- `webappserver.request.HttpRequest` parses a request incrementally with
  size limits, decodes URL and form parameters, stores
  `multipart/form-data` uploads in temporary files and extracts cookies.
  `url_decode` is available on its own.
- `webappserver.response.HttpResponse` sets `Content-Length` for a single
  write and switches to chunked transfer encoding for streamed output
  unless the response carries `Connection: close`. Changing headers or
  cookies after they were sent raises `ResponseStateError`.
- `webappserver.cookie.HttpCookie` (RFC 2109 cookies) and `split_csv`.
- `webappserver.session.HttpSession` and
  `webappserver.sessionstore.HttpSessionStore`: thread-safe sessions kept
  by a store that removes expired ones once a minute.
- `webappserver.staticfiles.StaticFileController` serves files below a
  document root with a small in-memory cache.
- `webappserver.settings.Settings` holds configuration values;
  `library_version()` returns the library version.

## Installing

```
pip install .
```

## Running from the command line

```
webappserver [config.ini] [--host HOST] [--port PORT] [--docroot DIR]
```

serves the files of a directory with `StaticFileController` until
interrupted with Ctrl-C. The optional INI file may hold a `[listener]`
section (listener and pool settings) and a `[docroot]` section (static
file settings); relative paths in it are resolved against the file's
directory. The options override the file. The port defaults to 8080.
Run `webappserver --help` to list the options.

## Using it from code

Write a request handler by subclassing `HttpRequestHandler` and
overriding `service`. The base class answers every request with
`501 not implemented`.

```python
from webappserver.settings import Settings
from webappserver.handler import HttpRequestHandler
from webappserver.listener import HttpListener


class Hello(HttpRequestHandler):
    def service(self, request, response):
        response.set_header(b"Content-Type", b"text/plain")
        response.write(b"Hello " + request.get_parameter(b"name"), True)


settings = Settings({"port": 8080, "minThreads": 1, "maxThreads": 10}, None)
listener = HttpListener(settings, Hello())
```

The listener starts listening when it is created and raises `OSError` if
the port cannot be bound. `listener.close()` stops listening and shuts
down the handler pool; `listen()` starts again. It can also be used as a
context manager.

Serve a directory of files with `StaticFileController`:

```python
from webappserver.staticfiles import StaticFileController

files = StaticFileController(Settings({"path": "docroot"}, "/etc/myapp/app.ini"))
```

Relative paths are resolved against the directory of the settings file.
Paths containing `/..` are refused with 403, a directory request serves
its `index.html`, and missing files give 404.

Sessions are kept in an `HttpSessionStore`:

```python
from webappserver.sessionstore import HttpSessionStore

store = HttpSessionStore(Settings({"expirationTime": 3600000}, None))

# inside service():
session = store.get_session(request, response, True)
session.set(b"visits", (session.get(b"visits") or 0) + 1)

# on shutdown:
store.close()
```

## Settings

| Key | Default | Meaning |
| --- | --- | --- |
| `host` | all interfaces | Address to bind to |
| `port` | 0 (any free port); 8080 for the command | TCP port to listen on |
| `minThreads` | 1 | Idle handlers kept running |
| `maxThreads` | 100 | Maximum number of connection handlers |
| `cleanupInterval` | 1000 | Milliseconds between pool clean-ups |
| `readTimeout` | 10000 | Milliseconds to wait for a complete request |
| `maxRequestSize` | 16000 | Maximum request size in bytes |
| `maxMultiPartSize` | 1000000 | Maximum multipart body size in bytes |
| `sslKeyFile`, `sslCertFile` | | PEM files; enable HTTPS when both are set |
| `expirationTime` | 3600000 | Session lifetime in milliseconds |
| `cookieName` | `sessionid` | Name of the session cookie |
| `cookiePath`, `cookieComment`, `cookieDomain` | | Session cookie attributes |
| `path` | `.` | Document root of the static file controller |
| `encoding` | `UTF-8` | Charset sent for text and HTML files |
| `maxAge` | 60000 | Browser cache time in milliseconds |
| `cacheTime` | 60000 | Server cache time in milliseconds, 0 for no limit |
| `cacheSize` | 1000000 | Server cache size in bytes |
| `maxCachedFileSize` | 65536 | Larger files are not cached |

A listener with TLS settings serves HTTPS only; run two listeners on
different ports to offer both.

## What it does not do

There is no routing of paths to different handlers: a listener passes
every request to the one handler it was given, so dispatching by path is
left to your own `service` method. There are no templates and no
persistent session storage; sessions live in memory only.

## Running the tests

```
pip install .[test]
pytest
```