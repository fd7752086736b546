# Copyright (c) 2009-2010 Six Apart Ltd.
# All rights reserved.
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
# * Redistributions of source code must retain the above copyright notice,
#   this list of conditions and the following disclaimer.
#
# * Redistributions in binary form must reproduce the above copyright notice,
#   this list of conditions and the following disclaimer in the documentation
#   and/or other materials provided with the distribution.
#
# * Neither the name of Six Apart Ltd. nor the names of its contributors may
#   be used to endorse or promote products derived from this software without
#   specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

import logging
import socketserver
import sys
import threading
import time

import httplib2


def log():
    logging.basicConfig(level=logging.DEBUG, stream=sys.stderr,
        format='%(asctime)s %(name)s %(levelname)s %(message)s')


def response(status=200, **headers):
    """Returns an `httplib2.Response` with the given status and headers."""
    info = {'status': str(status)}
    info.update(headers)
    return httplib2.Response(info)


class FakeHttp(object):

    """Stands in for the `httplib2.Http` instance of a `Handle`.

    `request()` returns `content` after `delay` seconds, raises `error` if
    one is given, or blocks until `release` is set if `block` is true.
    Calls are thread-safe, so fakes can be driven by a batch's thread pool.

    """

    def __init__(self, content=b'', status=200, delay=0, error=None, block=False):
        self.content = content
        self.status = status
        self.delay = delay
        self.error = error
        self.block = block
        self.release = threading.Event()
        self.calls = list()
        self.connections = {}
        self.closed = False
        self.timeout = None
        self.follow_redirects = True
        self._lock = threading.Lock()

    def request(self, uri, method='GET', body=None, headers=None, redirections=5):
        with self._lock:
            self.calls.append((uri, method, body, headers))
        if self.block:
            self.release.wait(10)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return response(self.status), self.content

    def close(self):
        self.closed = True


def worker_threads():
    """Returns the names of live threads started by `Multi` thread pools."""
    return [t.name for t in threading.enumerate() if t.name.startswith('httpmulti')]


class ReplyHandler(socketserver.BaseRequestHandler):

    """Answers every request with a small JSON document."""

    reply = (b'HTTP/1.1 200 OK\r\n'
        b'Content-Type: application/json\r\n'
        b'Content-Length: 8\r\n'
        b'Connection: close\r\n'
        b'\r\n'
        b'{"a": 1}')

    def handle(self):
        data = b''
        while b'\r\n\r\n' not in data:
            chunk = self.request.recv(4096)
            if not chunk:
                return
            data += chunk
        self.request.sendall(self.reply)


class SilentHandler(socketserver.BaseRequestHandler):

    """Accepts connections and never answers them."""

    def handle(self):
        self.server.stopped.wait(10)


class LocalServer(socketserver.ThreadingTCPServer):

    """A TCP server on a free port of 127.0.0.1, served from a daemon
    thread until `close()` is called."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, handler_class):
        socketserver.ThreadingTCPServer.__init__(self, ('127.0.0.1', 0), handler_class)
        self.stopped = threading.Event()
        self.thread = threading.Thread(target=self.serve_forever, daemon=True)
        self.thread.start()

    @property
    def url(self):
        return 'http://127.0.0.1:%d/' % self.server_address[1]

    def close(self):
        self.stopped.set()
        self.shutdown()
        self.server_close()
