# cushion: session fabric for a lightweight Couch
# Copyright (C) 2011-2016 Novacut Inc
#
# This file is part of `cushion`.
#
# `cushion` is free software: you can redistribute it and/or modify it under
# the terms of the GNU Lesser General Public License as published by the Free
# Software Foundation, either version 3 of the License, or (at your option) any
# later version.
#
# `cushion` is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY or FITNESS
# FOR A PARTICULAR PURPOSE.  See the GNU Lesser General Public License for more
# details.
#
# You should have received a copy of the GNU Lesser General Public License along
# with `cushion`.  If not, see <http://www.gnu.org/licenses/>.
#
# Authors:
#   Jason Gerard DeRose <jderose@novacut.com>
#

"""
Unit tests for `cushion` package.

Nothing here talks to a live CouchDB.  Instead a `FakeConnection` is put in
place of the thread-local ``degu.client.Connection``, so every request goes
through the real `cushion.Communication` code and is recorded, and gets back
whatever `degu.client.Response` the test scripted.
"""

from dbase32 import random_id
from degu.client import Response

import cushion


URL = 'http://localhost:5984/'


def random_dbname():
    return 'db-' + random_id().lower()


def random_user():
    return cushion.User(random_id().lower(), random_id())


class FakeBody:
    def __init__(self, data):
        self.__data = data

    def read(self):
        return self.__data


def json_response(obj, status=200, reason='OK', headers=None):
    body = (None if obj is None else FakeBody(cushion.dumps(obj).encode()))
    return Response(status, reason, ({} if headers is None else headers), body)


def status_response(status, reason, obj=None):
    return json_response(obj, status, reason)


class FakeConnection:
    """
    Stands in for a ``degu.client.Connection``.
    """

    def __init__(self, *responses):
        self.closed = False
        self.responses = list(responses)
        self.calls = []

    def request(self, method, path, headers, body):
        self.calls.append((method, path, dict(headers), body))
        return self.responses.pop(0)

    @property
    def requests(self):
        return [(method, path) for (method, path, headers, body) in self.calls]


def fake_comm(*responses, env=URL, user=None, auth_mode=None):
    comm = cushion.Communication(env, user, auth_mode)
    conn = FakeConnection(*responses)
    comm.threadlocal.connection = conn
    return (comm, conn)


def fake_connection(*responses, env=URL, user=None, auth_mode=None):
    (comm, conn) = fake_comm(*responses,
        env=env, user=user, auth_mode=auth_mode
    )
    return (cushion.Connection(comm=comm), conn)
