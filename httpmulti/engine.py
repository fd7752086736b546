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

"""

The transfer engine moves bytes for `httpmulti`. It wraps `httplib2.Http`
instances in `Handle` objects that are configured once, performed once and
released once, and coordinates many handles through a shared `Multi` context
that runs their transfers concurrently while the caller polls.

Transport failures never escape a `Handle` as exceptions. They are recorded on
the handle as a numeric error code and message, using the same code numbers
curl uses, so executors can decide which ones are fatal.

"""

from concurrent.futures import ThreadPoolExecutor, wait, FIRST_COMPLETED
from errno import EADDRNOTAVAIL, EHOSTUNREACH, ENETDOWN, ENETUNREACH
import http.client
import logging
import socket
import ssl
import threading
import time
from urllib.parse import urlparse

import httplib2

log = logging.getLogger(__name__)


E_OK = 0
E_UNSUPPORTED_PROTOCOL = 1
E_URL_MALFORMAT = 3
E_COULDNT_RESOLVE_HOST = 6
E_COULDNT_CONNECT = 7
E_WEIRD_SERVER_REPLY = 8
E_OPERATION_TIMEDOUT = 28
E_SSL_CONNECT_ERROR = 35
E_ABORTED = 42
E_BAD_FUNCTION_ARGUMENT = 43
E_TOO_MANY_REDIRECTS = 47
E_GOT_NOTHING = 52
E_RECV_ERROR = 56

M_OK = 0
M_BAD_EASY_HANDLE = 2
M_INTERNAL_ERROR = 4
M_ADDED_ALREADY = 7

# Seconds `Multi.close()` spends aborting transfers still in flight.
DEFAULT_CLOSE_TIMEOUT = 1.0

_messages = {
    E_OK: 'No error',
    E_UNSUPPORTED_PROTOCOL: 'Unsupported protocol',
    E_URL_MALFORMAT: 'URL using bad/illegal format or missing URL',
    E_COULDNT_RESOLVE_HOST: "Couldn't resolve host name",
    E_COULDNT_CONNECT: "Couldn't connect to server",
    E_WEIRD_SERVER_REPLY: 'Weird server reply',
    E_OPERATION_TIMEDOUT: 'Timeout was reached',
    E_SSL_CONNECT_ERROR: 'SSL connect error',
    E_ABORTED: 'Transfer aborted',
    E_BAD_FUNCTION_ARGUMENT: 'Handle was given a bad argument',
    E_TOO_MANY_REDIRECTS: 'Number of redirects hit maximum amount',
    E_GOT_NOTHING: 'Server returned nothing (no headers, no data)',
    E_RECV_ERROR: 'Failure when receiving data from the peer',
}

_multi_messages = {
    M_OK: 'No error',
    M_BAD_EASY_HANDLE: 'Invalid easy handle',
    M_INTERNAL_ERROR: 'Internal error',
    M_ADDED_ALREADY: 'The easy handle is already added to a multi handle',
}

# Checked in order, so subclasses come before their bases.
_exception_codes = (
    (socket.timeout, E_OPERATION_TIMEDOUT),
    (socket.gaierror, E_COULDNT_RESOLVE_HOST),
    (httplib2.ServerNotFoundError, E_COULDNT_RESOLVE_HOST),
    (httplib2.RedirectLimit, E_TOO_MANY_REDIRECTS),
    (httplib2.RelativeURIError, E_URL_MALFORMAT),
    (ssl.SSLError, E_SSL_CONNECT_ERROR),
    (http.client.RemoteDisconnected, E_GOT_NOTHING),
    (ConnectionRefusedError, E_COULDNT_CONNECT),
    (ConnectionAbortedError, E_COULDNT_CONNECT),
    (http.client.HTTPException, E_WEIRD_SERVER_REPLY),
    (httplib2.HttpLib2Error, E_WEIRD_SERVER_REPLY),
    (OSError, E_RECV_ERROR),
)

# Socket errors that only happen while a connection is being set up.
_connect_errnos = frozenset((EADDRNOTAVAIL, EHOSTUNREACH, ENETDOWN, ENETUNREACH))

TRANSPORT_ERRORS = tuple(exc_type for exc_type, code in _exception_codes)


def strerror(code):
    """Returns the message for transport error code `code`."""
    return _messages.get(code, 'Unknown error %d' % code)


def multi_strerror(code):
    """Returns the message for multiplex status code `code`."""
    return _multi_messages.get(code, 'Unknown multi error %d' % code)


def error_code(exc):
    """Returns the transport error code for exception `exc`, one of the
    `TRANSPORT_ERRORS`."""
    for exc_type, code in _exception_codes:
        if isinstance(exc, exc_type):
            if code == E_RECV_ERROR and exc.errno in _connect_errnos:
                return E_COULDNT_CONNECT
            return code
    return E_ABORTED


class TransportError(Exception):

    """An Exception raised when a transfer could not communicate with its
    server at all."""

    def __init__(self, code, message=None):
        self.code = code
        self.message = message or strerror(code)
        super(TransportError, self).__init__(self.message)

    def __str__(self):
        return '[%d] %s' % (self.code, self.message)


class Handle(object):

    """One HTTP transfer bound to its own `httplib2.Http` instance.

    A `Handle` is configured with `configure()`, run with `perform()` and
    released with `close()`. After `perform()` returns, `response`,
    `content`, `errno` and `error` describe what happened.

    """

    def __init__(self, url):
        self.http = httplib2.Http()
        self.url = url
        self.method = 'GET'
        self.headers = {}
        self.body = None
        self.max_redirects = httplib2.DEFAULT_MAX_REDIRECTS

        self.response = None
        self.content = b''
        self.errno = E_OK
        self.error = ''

        self.closed = False
        self._done = False
        self._cancelled = False
        self._running = False
        self._lock = threading.Lock()

    def __repr__(self):
        return '<Handle %s %s>' % (self.method, self.url)

    @property
    def status(self):
        """The HTTP status code of the response, or 0 if there was none."""
        if self.response is None:
            return 0
        return self.response.status

    @property
    def done(self):
        with self._lock:
            return self._done

    def configure(self, options):
        """Applies the settings in `TransferOptions` instance `options`.

        Settings `options` leaves unset keep their current values. Names in
        `options.engine` are set as attributes of the underlying
        `httplib2.Http` instance; a name it has no attribute for raises a
        `ValueError`.

        """
        if options.url is not None:
            self.url = options.url
        if options.method is not None:
            self.method = options.method
        if options.headers is not None:
            self.headers = dict(options.headers)
        if options.body is not None:
            self.body = options.body
        if options.timeout_ms is not None:
            self.http.timeout = options.timeout_ms / 1000.0 if options.timeout_ms > 0 else None
        if options.follow_redirects is not None:
            self.http.follow_redirects = options.follow_redirects
        if options.max_redirects is not None:
            self.max_redirects = options.max_redirects

        for name, value in (options.engine or {}).items():
            if name.startswith('_') or not hasattr(self.http, name):
                raise ValueError('Unknown engine option %r' % (name,))
            setattr(self.http, name, value)

    def perform(self):
        """Runs the transfer to completion, blocking the calling thread.

        Transport failures are recorded in `errno` and `error` rather than
        raised. Any other exception is recorded as `E_ABORTED` and then
        re-raised.

        If the handle is released while the transfer runs, the engine is
        closed by this call once the transfer has ended.

        """
        with self._lock:
            released = self.closed
            self._running = not released
        if released:
            self._finish(None, b'', E_BAD_FUNCTION_ARGUMENT, 'Handle was already released')
            return

        try:
            self._transfer()
        finally:
            with self._lock:
                self._running = False
                released = self.closed
            if released:
                self.http.close()
                log.debug('Released %r after its transfer ended', self)

    def _transfer(self):
        scheme = urlparse(self.url).scheme.lower()
        if scheme not in ('http', 'https'):
            self._finish(None, b'', E_UNSUPPORTED_PROTOCOL,
                'Protocol "%s" not supported' % scheme)
            return

        req_log = logging.getLogger('.'.join((__name__, 'request')))
        if req_log.isEnabledFor(logging.DEBUG):
            req_log.debug('Making request:\n%s %s\n%s\n\n%s', self.method, self.url,
                '\n'.join([
                    '%s: %s' % (k, v) for k, v in self.headers.items()
                ]), self.body or '')

        try:
            response, content = self.http.request(self.url, method=self.method,
                body=self.body, headers=self.headers, redirections=self.max_redirects)
        except TRANSPORT_ERRORS as exc:
            code = error_code(exc)
            self._finish(None, b'', code, str(exc) or strerror(code))
            return
        except Exception as exc:
            self._finish(None, b'', E_ABORTED, '%s: %s' % (strerror(E_ABORTED), exc))
            raise

        resp_log = logging.getLogger('.'.join((__name__, 'response')))
        if resp_log.isEnabledFor(logging.DEBUG):
            resp_log.debug('Got response:\n%s\n\n%s',
                '\n'.join([
                    '%s: %s' % (k, v) for k, v in response.items()
                ]), content)

        self._finish(response, content or b'', E_OK, '')

    def _finish(self, response, content, errno, error):
        with self._lock:
            if self._cancelled:
                log.debug('Discarding result of cancelled transfer %r', self)
                return
            self.response = response
            self.content = content
            self.errno = errno
            self.error = error
            self._done = True

    def cancel(self):
        """Detaches this handle from a transfer that has not finished.

        Returns `True` if the transfer was still in flight, in which case
        whatever it produces later is discarded, or `False` if it had already
        finished.

        """
        with self._lock:
            if self._done:
                return False
            self._cancelled = True
            return True

    def abort(self):
        """Shuts down the sockets of this handle's engine so that a transfer
        blocked on them fails promptly.

        The transfer records the failure like any other transport error
        unless the handle was cancelled first.

        """
        for conn in list(self.http.connections.values()):
            sock = getattr(conn, 'sock', None)
            if sock is None:
                continue
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as exc:
                # The socket was already closed or never connected.
                log.debug('Could not shut down socket of %r: %s', self, exc)

    def close(self):
        """Releases the engine connections held by this handle.

        A transfer still in flight is cancelled and aborted. The engine is
        then closed by the thread running the transfer, once it has ended.
        Closing an already closed handle does nothing.

        """
        with self._lock:
            if self.closed:
                return
            self.closed = True
            in_flight = self._running
            if in_flight:
                self._cancelled = True

        if in_flight:
            self.abort()
            log.debug('Aborted transfer of released %r', self)
        else:
            self.http.close()
            log.debug('Released %r', self)


class Multi(object):

    """A multiplexing context that runs the transfers of many `Handle`
    instances concurrently.

    Registered handles are started on the context's thread pool by the first
    `perform()` call after they are added. `perform()` itself never blocks; use
    `wait()` to sleep until a transfer completes.

    """

    def __init__(self, max_workers=None, close_timeout=DEFAULT_CLOSE_TIMEOUT):
        self.max_workers = max_workers
        self.close_timeout = close_timeout
        self.errno = M_OK
        self.handles = list()
        self._futures = dict()
        self._started = dict()
        self._failures = set()
        self._pool = None
        self.closed = False

    def _fail(self, status, reason):
        log.debug('Multi status %d: %s', status, reason)
        if self.errno == M_OK:
            self.errno = status
        return status

    def add_handle(self, handle):
        """Registers `handle` with this context and returns a status code.

        A released handle is refused with `M_BAD_EASY_HANDLE` and marked
        failed; a handle that is already registered is refused with
        `M_ADDED_ALREADY`. Either way the status sticks and is reported by
        every later `perform()`.

        """
        if handle.closed:
            handle._finish(None, b'', E_BAD_FUNCTION_ARGUMENT, 'Handle was already released')
            return self._fail(M_BAD_EASY_HANDLE, 'refused released %r' % handle)
        if handle in self.handles:
            return self._fail(M_ADDED_ALREADY, 'refused duplicate %r' % handle)
        self.handles.append(handle)
        return M_OK

    def remove_handle(self, handle):
        """Unregisters `handle`, cancelling its transfer if it never started."""
        if handle not in self.handles:
            return
        self.handles.remove(handle)
        future = self._futures.pop(handle, None)
        if future is not None:
            future.cancel()

    def perform(self):
        """Advances every registered handle without blocking.

        Transfers that have not been started yet are handed to the thread
        pool. Returns a tuple of the context's status code and the number of
        transfers still running.

        """
        if self.closed:
            raise ValueError('Multi context is closed')

        for handle in self.handles:
            if handle in self._futures:
                continue
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self.max_workers or max(len(self.handles), 1),
                    thread_name_prefix='httpmulti')
            try:
                future = self._pool.submit(handle.perform)
                self._futures[handle] = self._started[handle] = future
            except RuntimeError as exc:
                handle._finish(None, b'', E_ABORTED, '%s: %s' % (strerror(E_ABORTED), exc))
                self._fail(M_INTERNAL_ERROR, str(exc))

        running = 0
        for handle, future in self._futures.items():
            if not future.done():
                running += 1
            elif handle not in self._failures and not future.cancelled() \
                    and future.exception() is not None:
                self._failures.add(handle)
                log.error('Transfer %r raised', handle, exc_info=future.exception())
                self._fail(M_INTERNAL_ERROR, str(future.exception()))

        return self.errno, running

    def running(self, handle):
        """Returns whether the transfer of `handle` is still in flight."""
        future = self._futures.get(handle)
        return future is not None and not future.done()

    def wait(self, timeout):
        """Blocks until some running transfer completes or `timeout` seconds
        pass, whichever is first."""
        pending = [f for f in self._futures.values() if not f.done()]
        if pending:
            wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)

    def close(self):
        """Unregisters all remaining handles and shuts the thread pool down.

        Transfers that have not started are dropped. Transfers still in
        flight are cancelled and aborted until they end, for at most
        `close_timeout` seconds, so no worker thread outlives the context.

        """
        if self.closed:
            return
        for handle in list(self.handles):
            self.remove_handle(handle)
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._reap()
        self.closed = True

    def _reap(self):
        deadline = time.monotonic() + self.close_timeout
        pending = [h for h, f in self._started.items() if not f.done()]
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                log.warning('%d transfers still running after their context was closed',
                    len(pending))
                return
            # Aborting again catches connections the engine opened since,
            # such as its reconnect after a dropped connection.
            for handle in pending:
                handle.cancel()
                handle.abort()
            wait([self._started[h] for h in pending], timeout=min(remaining, 0.05))
            pending = [h for h in pending if not self._started[h].done()]
