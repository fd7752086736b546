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

Building executable `Handle` instances from a description of an HTTP request.

"""

from collections import namedtuple
from collections.abc import Mapping
import json
import logging
from types import MappingProxyType

from httpmulti.engine import Handle
from httpmulti.options import TransferOptions

log = logging.getLogger(__name__)

JSON_CONTENT_TYPE = 'application/json; charset=utf-8'


class EncodingError(Exception):
    """An Exception raised when a request body cannot be serialized."""
    pass


def encode_body(body):
    """Returns `body` as the bytes to send, or `None` if there's no body.

    Strings are sent as their UTF-8 encoding and bytes as they are. Any other
    value is encoded as JSON; if it can't be, an `EncodingError` is raised.
    Empty strings, bytes, mappings and sequences count as no body.

    """
    if body is None:
        return None
    if isinstance(body, (Mapping, list, tuple)) and not body:
        return None
    if isinstance(body, bytes):
        return body or None
    if isinstance(body, str):
        return body.encode('utf-8') or None
    try:
        return json.dumps(body, ensure_ascii=False, allow_nan=False).encode('utf-8')
    except (TypeError, ValueError) as exc:
        raise EncodingError('Could not encode request body as JSON: %s' % exc) from exc


def merge_headers(headers, overrides):
    """Returns a new header dict with `overrides` applied over `headers`.

    Header names match case-insensitively and the last spelling written is
    kept. An override value of `None` removes the header.

    """
    merged = dict(headers)
    for name, value in (overrides or {}).items():
        for existing in [k for k in merged if k.lower() == name.lower()]:
            del merged[existing]
        if value is not None:
            merged[name] = str(value)
    return merged


class RequestSpec(namedtuple('RequestSpec', 'method url body headers options timeout_ms')):

    """An immutable description of one HTTP request.

    Parameter `headers` is a mapping of header overrides (a `None` value
    removes a default header), `options` a `TransferOptions` instance or a
    mapping of its field names overriding the engine settings derived from
    the other fields, and `timeout_ms` the transfer timeout in milliseconds,
    where 0 means no timeout.

    """

    __slots__ = ()

    def __new__(cls, method, url, body=None, headers=None, options=None, timeout_ms=0):
        if timeout_ms < 0:
            raise ValueError('timeout_ms must not be negative')
        return super(RequestSpec, cls).__new__(cls, method, url, body,
            MappingProxyType(dict(headers or {})),
            TransferOptions.coerce(options), timeout_ms)

    def prepare(self):
        """Builds a configured but unexecuted `Handle` for this request.

        If the body can't be encoded, an `EncodingError` is raised and no
        handle is created.

        """
        payload = encode_body(self.body)

        headers = {'Accept': JSON_CONTENT_TYPE}
        if payload is not None:
            headers['Content-Type'] = JSON_CONTENT_TYPE
            headers['Content-Length'] = str(len(payload))
        headers = merge_headers(headers, self.headers)

        defaults = TransferOptions(url=self.url, method=self.method,
            headers=headers, body=payload)
        if self.timeout_ms > 0:
            defaults.timeout_ms = self.timeout_ms
        options = defaults.merged(self.options)

        handle = Handle(self.url)
        try:
            handle.configure(options)
        except Exception:
            handle.close()
            raise
        log.debug('Prepared %r', handle)
        return handle


def build(method, url, body=None, headers=None, options=None, timeout_ms=0):
    """Returns a configured `Handle` for the described request without
    performing it.

    See `RequestSpec` for the meaning of the parameters.

    """
    return RequestSpec(method, url, body, headers, options, timeout_ms).prepare()
