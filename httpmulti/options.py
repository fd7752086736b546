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

Typed engine settings for a single transfer.

"""

from collections.abc import Mapping


class TransferOptions(object):

    """The engine-level settings applied to a `Handle`.

    Every field defaults to `None`, meaning "leave the engine's current value
    alone". Field `engine` is a mapping of `httplib2.Http` attribute names to
    values for settings this class does not name itself.

    """

    fields = ('url', 'method', 'headers', 'body', 'timeout_ms',
        'follow_redirects', 'max_redirects', 'engine')

    def __init__(self, url=None, method=None, headers=None, body=None,
            timeout_ms=None, follow_redirects=None, max_redirects=None,
            engine=None):
        self.url = url
        self.method = method
        self.headers = headers
        self.body = body
        self.timeout_ms = timeout_ms
        self.follow_redirects = follow_redirects
        self.max_redirects = max_redirects
        self.engine = dict(engine) if engine else None

    @classmethod
    def coerce(cls, value):
        """Returns `value` as a `TransferOptions` instance.

        Parameter `value` may be `None`, a `TransferOptions` instance, or a
        mapping of field names to values. Unrecognized names in a mapping
        raise a `TypeError`.

        """
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            unknown = set(value) - set(cls.fields)
            if unknown:
                raise TypeError('Unknown transfer options: %s'
                    % ', '.join(sorted(unknown)))
            return cls(**value)
        raise TypeError('Cannot use %r as transfer options' % (value,))

    def items(self):
        return [(name, getattr(self, name)) for name in self.fields
            if getattr(self, name) is not None]

    def merged(self, overrides):
        """Returns a new `TransferOptions` with every field set in `overrides`
        replacing the one in this instance.

        `engine` mappings are merged key by key.

        """
        overrides = self.coerce(overrides)
        values = dict(self.items())
        for name, value in overrides.items():
            if name == 'engine' and values.get('engine'):
                engine = dict(values['engine'])
                engine.update(value)
                value = engine
            values[name] = value
        return type(self)(**values)

    def __eq__(self, other):
        if not isinstance(other, TransferOptions):
            return NotImplemented
        return self.items() == other.items()

    def __repr__(self):
        return '%s(%s)' % (type(self).__name__,
            ', '.join('%s=%r' % item for item in self.items()))
