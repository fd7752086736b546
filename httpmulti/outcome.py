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

Outcomes are what a transfer amounts to once its payload has been looked at:
a `Decoded` JSON value, a `Raw` payload that wasn't JSON, an `Empty` payload,
or a `Failure` to communicate at all.

"""

import json

from httpmulti.engine import TransportError


class Outcome(object):

    """Base class for the result of one transfer."""

    ok = True

    def _key(self):
        return ()

    def unwrap(self):
        """Returns the payload this outcome carries."""
        return None

    def __eq__(self, other):
        if type(self) is not type(other):
            return NotImplemented
        return self._key() == other._key()

    def __repr__(self):
        return '%s(%s)' % (type(self).__name__,
            ', '.join(repr(k) for k in self._key()))


class Decoded(Outcome):

    """A payload that parsed as JSON, holding the parsed `value`."""

    def __init__(self, value):
        self.value = value

    def _key(self):
        return (self.value,)

    def unwrap(self):
        return self.value


class Raw(Outcome):

    """A non-empty payload that isn't JSON.

    The payload bytes are kept untouched in `content`; `text` decodes them as
    UTF-8, replacing anything that doesn't decode.

    """

    def __init__(self, content):
        if isinstance(content, str):
            content = content.encode('utf-8')
        self.content = content

    @property
    def text(self):
        return self.content.decode('utf-8', 'replace')

    def _key(self):
        return (self.content,)

    def unwrap(self):
        return self.content


class Empty(Outcome):

    """An empty payload."""


class Failure(Outcome):

    """A transfer that failed at the transport level with error `code`."""

    ok = False

    def __init__(self, code, message):
        self.code = code
        self.message = message

    @property
    def error(self):
        return TransportError(self.code, self.message)

    def _key(self):
        return (self.code, self.message)

    def unwrap(self):
        raise self.error


def classify(content):
    """Turns the payload bytes of a finished transfer into an `Outcome`.

    An empty payload is `Empty`, one that parses as JSON is `Decoded`, and
    anything else is passed through as `Raw`. Malformed payloads never raise.

    """
    if not content:
        return Empty()
    try:
        return Decoded(json.loads(content))
    except (ValueError, RecursionError):
        return Raw(content)
