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

import unittest

from httpmulti.engine import TransportError
from httpmulti.outcome import Decoded, Empty, Failure, Raw, classify


class TestClassify(unittest.TestCase):

    def test_empty(self):
        self.assertEqual(classify(b''), Empty())
        self.assertEqual(classify(None), Empty())
        self.assertTrue(classify(b'').unwrap() is None)

    def test_decoded(self):
        for body, value in (
            (b'{"a": 1}', {'a': 1}),
            (b'[1, "two", null]', [1, 'two', None]),
            (b'"moose"', 'moose'),
            (b'3.5', 3.5),
            (b'null', None),
            ('{"name": "élan"}'.encode('utf-8'), {'name': 'élan'}),
        ):
            outcome = classify(body)
            self.assertEqual(outcome, Decoded(value))
            self.assertEqual(outcome.unwrap(), value)

    def test_raw(self):
        for body in (
            b'<html><body>oops</body></html>',
            b'{"unterminated": ',
            b'   ',
            b'\x80\x81 not utf-8',
        ):
            outcome = classify(body)
            self.assertEqual(outcome, Raw(body))
            # Raw payloads come back byte for byte.
            self.assertEqual(outcome.content, body)
            self.assertEqual(outcome.unwrap(), body)

    def test_raw_text(self):
        self.assertEqual(Raw(b'plain text').text, 'plain text')
        self.assertEqual(Raw('café').content, b'caf\xc3\xa9')
        self.assertEqual(Raw(b'a\xffb').text, 'a\ufffdb')


class TestOutcomes(unittest.TestCase):

    def test_equality(self):
        self.assertEqual(Decoded({'a': 1}), Decoded({'a': 1}))
        self.assertNotEqual(Decoded({'a': 1}), Decoded({'a': 2}))
        self.assertNotEqual(Decoded('x'), Raw(b'x'))
        self.assertNotEqual(Empty(), Decoded(None))
        self.assertEqual(Failure(7, 'refused'), Failure(7, 'refused'))
        self.assertNotEqual(Failure(7, 'refused'), Failure(6, 'refused'))

    def test_ok(self):
        self.assertTrue(Decoded(1).ok)
        self.assertTrue(Raw(b'x').ok)
        self.assertTrue(Empty().ok)
        self.assertFalse(Failure(7, 'refused').ok)

    def test_failure(self):
        failure = Failure(7, "Couldn't connect to server")
        error = failure.error
        self.assertTrue(isinstance(error, TransportError))
        self.assertEqual(error.code, 7)
        self.assertEqual(error.message, "Couldn't connect to server")
        self.assertRaises(TransportError, failure.unwrap)

    def test_repr(self):
        self.assertEqual(repr(Decoded({'a': 1})), "Decoded({'a': 1})")
        self.assertEqual(repr(Empty()), 'Empty()')
        self.assertEqual(repr(Failure(28, 'slow')), "Failure(28, 'slow')")


if __name__ == '__main__':
    unittest.main()
