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

The HTTP client runs prepared `Handle` instances, either one at a time,
blocking until each is done, or as a batch sharing one `Multi` context, and
turns what they return into `Outcome` instances.

"""

from contextlib import ExitStack
import logging
import time

from httpmulti.engine import (Multi, TransportError, E_OK, E_OPERATION_TIMEDOUT,
    M_OK, multi_strerror)
from httpmulti.outcome import Empty, Failure, classify
from httpmulti.request import build

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_POLL_INTERVAL_MS = 50


class BatchError(Exception):
    """An Exception raised when the `Client` cannot open, add to, or
    complete a batch request."""
    pass


class MultiError(BatchError):
    """An exception raised when a fail-fast batch sees its multiplexing
    context report a bad status."""
    def __init__(self, code, message):
        self.code = code
        self.message = message
        super(MultiError, self).__init__(
            'Batch aborted: [%d] %s' % (self.code, self.message)
        )


def execute(handle, strict=True):
    """Performs `handle`, blocking until it completes, and returns its
    `Outcome`.

    The handle is always released before this function returns. If the
    transfer failed for any reason other than reaching its timeout, a
    `TransportError` is raised, or, if `strict` is false, a `Failure` is
    returned instead. A timed out transfer is not a failure: whatever payload
    arrived (usually none) is classified as usual.

    """
    try:
        handle.perform()
    finally:
        handle.close()

    if handle.errno not in (E_OK, E_OPERATION_TIMEDOUT):
        if strict:
            raise TransportError(handle.errno, handle.error)
        return Failure(handle.errno, handle.error)
    return classify(handle.content)


class BatchPolicy(object):

    """How `execute_batch()` runs a batch.

    If `fail_fast` is set, the batch is abandoned as soon as the multiplexing
    context reports a bad status. `timeout_ms` bounds the whole batch in
    milliseconds; 0 waits for every transfer. `poll_interval_ms` is the most
    the loop sleeps between polls, and `max_workers` caps the number of
    transfers running at once (by default, all of them).

    """

    def __init__(self, fail_fast=False, timeout_ms=0,
            poll_interval_ms=DEFAULT_POLL_INTERVAL_MS, max_workers=None):
        if timeout_ms < 0:
            raise ValueError('timeout_ms must not be negative')
        self.fail_fast = fail_fast
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.max_workers = max_workers

    def __repr__(self):
        return ('BatchPolicy(fail_fast=%r, timeout_ms=%r, poll_interval_ms=%r, max_workers=%r)'
            % (self.fail_fast, self.timeout_ms, self.poll_interval_ms, self.max_workers))


def _poll(multi, started):
    """Advances `multi` one step and returns its status, the number of
    transfers still running, and the milliseconds elapsed since `started`."""
    status, running = multi.perform()
    elapsed_ms = (time.monotonic() - started) * 1000
    return status, running, elapsed_ms


def _run(multi, policy):
    started = time.monotonic()
    status, running, elapsed_ms = _poll(multi, started)
    while (
        running
        and (not policy.fail_fast or status == M_OK)
        and (not policy.timeout_ms or elapsed_ms <= policy.timeout_ms)
    ):
        wait_ms = policy.poll_interval_ms
        if policy.timeout_ms:
            wait_ms = min(wait_ms, max(policy.timeout_ms - elapsed_ms, 0))
        multi.wait(wait_ms / 1000.0)
        status, running, elapsed_ms = _poll(multi, started)

    if running and not (policy.fail_fast and status != M_OK):
        log.warning('Batch timed out after %d ms with %d of %d requests still running',
            elapsed_ms, running, len(multi.handles))
    return status, running


def execute_batch(handles, policy=None):
    """Performs all of `handles` concurrently and returns their outcomes.

    The returned list has one `Outcome` per handle, in the same order as
    `handles`, whatever order the transfers finished in. A transfer that
    failed gets a `Failure` in its slot without affecting the others. If
    `policy.timeout_ms` passes first, transfers still running are abandoned
    and get `Empty` outcomes.

    If `policy.fail_fast` is set and the multiplexing context reports a bad
    status, a `MultiError` is raised instead and no outcomes are returned.

    Every handle is unregistered and released before this function returns or
    raises.

    """
    if policy is None:
        policy = BatchPolicy()
    handles = list(handles)

    # Callbacks unwind in reverse, so handles are released before the context
    # closes and waits for their aborted transfers.
    with ExitStack() as stack:
        multi = Multi(max_workers=policy.max_workers)
        stack.callback(multi.close)
        for handle in handles:
            stack.callback(handle.close)
        for handle in handles:
            stack.callback(multi.remove_handle, handle)

        for handle in handles:
            multi.add_handle(handle)
        log.debug('Making batch request for %d items', len(handles))

        status, running = _run(multi, policy)
        if policy.fail_fast and status != M_OK:
            raise MultiError(status, multi_strerror(status))

        outcomes = []
        for handle in handles:
            if multi.running(handle) and handle.cancel():
                outcomes.append(Empty())
            else:
                outcomes.append(classify(handle.content))

    for i, handle in enumerate(handles):
        if handle.errno != E_OK:
            outcomes[i] = Failure(handle.errno, handle.error)
    return outcomes


class BatchRequest(object):

    """A collection of prepared handles that should be performed together as
    one batch."""

    def __init__(self, policy):
        self.policy = policy
        self.handles = list()
        self.results = None

    def __len__(self):
        """Returns the number of requests there are to perform."""
        return len(self.handles)

    def add(self, handle):
        """Adds prepared `Handle` instance `handle` to this batch."""
        self.handles.append(handle)
        return handle

    def process(self):
        """Performs the batch, keeping and returning its outcomes."""
        self.results = execute_batch(self.handles, self.policy)
        return self.results

    def release(self):
        """Releases every handle in this batch without performing any."""
        for handle in self.handles:
            handle.close()


class Client(object):

    """A convenience interface for making single and batched HTTP requests
    with shared defaults."""

    def __init__(self, timeout_ms=DEFAULT_TIMEOUT_MS, fail_fast=False,
            batch_timeout_ms=0, poll_interval_ms=DEFAULT_POLL_INTERVAL_MS,
            max_workers=None):
        """Configures the `Client` instance's defaults.

        Parameter `timeout_ms` is the per-request timeout used when a call
        doesn't give one. Parameters `fail_fast`, `batch_timeout_ms`,
        `poll_interval_ms` and `max_workers` are the `BatchPolicy` settings
        used for batches.

        """
        self.timeout_ms = timeout_ms
        self.fail_fast = fail_fast
        self.batch_timeout_ms = batch_timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.max_workers = max_workers
        self.batchrequest = None

    def policy(self, fail_fast=None, timeout_ms=None):
        """Returns a `BatchPolicy` from this client's defaults, with any
        given setting taking their place."""
        return BatchPolicy(
            fail_fast=self.fail_fast if fail_fast is None else fail_fast,
            timeout_ms=self.batch_timeout_ms if timeout_ms is None else timeout_ms,
            poll_interval_ms=self.poll_interval_ms,
            max_workers=self.max_workers,
        )

    def make_request(self, method, url, body=None, headers=None, options=None,
            timeout_ms=None):
        """Builds a `Handle` for the given request without performing it.

        If `timeout_ms` is not given, the client's default timeout is used.

        """
        if timeout_ms is None:
            timeout_ms = self.timeout_ms
        return build(method, url, body, headers, options, timeout_ms)

    def call(self, method, url, body=None, headers=None, options=None,
            timeout_ms=None):
        """Builds and performs a single request, returning its `Outcome`.

        A transfer that fails other than by timing out raises a
        `TransportError`.

        """
        return execute(self.make_request(method, url, body, headers, options, timeout_ms))

    def multi_call(self, *handles, fail_fast=None, timeout_ms=None):
        """Performs the given handles as one batch and returns their
        outcomes in order."""
        return execute_batch(handles, self.policy(fail_fast, timeout_ms))

    def batch_request(self, fail_fast=None, timeout_ms=None):
        """Opens a batch request.

        If a batch request is already open, a `BatchError` is raised.

        You can use this method with the ``with`` statement::

        >>> with client.batch_request() as batch:
        ...     client.batch('GET', uri)
        >>> batch.results

        The batch request is then completed automatically at the end of the
        ``with`` block, or cleared if the block raised.

        """
        if self.batchrequest is not None:
            raise BatchError("There's already an open batch request")
        self.batchrequest = BatchRequest(self.policy(fail_fast, timeout_ms))

        # Return ourself so we can enter a "with" context.
        return self

    def batch(self, method, url, body=None, headers=None, options=None,
            timeout_ms=None):
        """Adds the given request to the open batch request, returning its
        `Handle`.

        If no batch request is open, a `BatchError` is raised.

        """
        if self.batchrequest is None:
            raise BatchError("There's no open batch request to add a request to")
        return self.batchrequest.add(
            self.make_request(method, url, body, headers, options, timeout_ms))

    def complete_batch(self):
        """Closes the open batch request, performing it and returning its
        outcomes.

        If no batch request is open, a `BatchError` is raised.

        """
        if self.batchrequest is None:
            raise BatchError("There's no open batch request to complete")
        batchrequest, self.batchrequest = self.batchrequest, None
        log.debug('Completing batch request for %d items', len(batchrequest))
        return batchrequest.process()

    def clear_batch(self):
        """Closes the open batch request without performing it."""
        if self.batchrequest is None:
            # well it's already cleared then isn't it
            return
        batchrequest, self.batchrequest = self.batchrequest, None
        batchrequest.release()

    def __enter__(self):
        return self.batchrequest

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is not None:
            # Exception! Let's forget the whole thing.
            self.clear_batch()
        else:
            # Finished the context. Try to complete the request.
            self.complete_batch()
