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
`cushion` - session fabric for a lightweight Couch.

Cushion is a session-level client for CouchDB.  Where a plain adapter just
makes it easy to call any part of the REST API, a `Connection` also keeps
track of how you're authenticated, what version of CouchDB you're talking to,
and whether the databases and users you care about are in the state you want
them in.

For example:

>>> conn = Connection('http://localhost:5984/')
>>> conn
Connection('http://localhost:5984/')
>>> conn.get_auth_mode()
'none'

Everything a `Connection` hands out (`Database` handles, cluster and node
connections) shares the same `Communication`, which is where the auth mode and
any session cookie live.
"""

import json
import ssl
import re
import threading
import platform
from base64 import b64encode
from collections import namedtuple
from urllib.parse import urlparse, urlencode, quote, ParseResult
import logging

from degu.client import Client, SSLClient, build_client_sslctx


__all__ = (
    'User',
    'ServerInfo',
    'Communication',
    'Connection',
    'Database',

    'HTTPError',
    'ClientError',
    'BadRequest',
    'Unauthorized',
    'Forbidden',
    'NotFound',
    'ContentNotFound',
    'MethodNotAllowed',
    'NotAcceptable',
    'Conflict',
    'PreconditionFailed',
    'BadContentType',
    'ExpectationFailed',
    'ServerError',

    'CouchError',
    'BadResponse',
    'DatabaseUnavailable',
    'DatabaseError',
    'DatabaseNotCreatable',
    'DatabaseNotDeletable',
)

__version__ = '16.10.0'
log = logging.getLogger()
USER_AGENT = 'Cushion/{} ({} {}; {})'.format(__version__,
    platform.system(), platform.release(), platform.machine()
)

HTTP_IPv4_URL = 'http://127.0.0.1:5984/'
HTTPS_IPv4_URL = 'https://127.0.0.1:6984/'
HTTP_IPv6_URL = 'http://[::1]:5984/'
HTTPS_IPv6_URL = 'https://[::1]:6984/'
URL_CONSTANTS = (
    HTTP_IPv4_URL,
    HTTPS_IPv4_URL,
    HTTP_IPv6_URL,
    HTTPS_IPv6_URL,
)
DEFAULT_URL = HTTP_IPv4_URL

# Port on which a CouchDB 2.x node exposes its node-local interface:
LOCAL_NODE_PORT = 5986

USER_PREFIX = 'org.couchdb.user:'
SESSION_COOKIE_NAME = 'AuthSession'

AUTH_NONE = 'none'
AUTH_BASIC = 'basic'
AUTH_COOKIE = 'cookie'
AUTH_MODES = (AUTH_NONE, AUTH_BASIC, AUTH_COOKIE)

User = namedtuple('User', 'username password')
ServerInfo = namedtuple('ServerInfo', 'version major')


def create_client(url, **options):
    """
    Convenience function to create a `degu.client.Client` from a URL.

    For example:

    >>> create_client('http://www.example.com/')
    Client(('www.example.com', 80))

    """
    t = (url if isinstance(url, ParseResult) else urlparse(url))
    if t.scheme != 'http':
        raise ValueError("scheme must be 'http', got {!r}".format(t.scheme))
    port = (80 if t.port is None else t.port)
    return Client((t.hostname, port), **options)


def create_sslclient(sslctx, url, **options):
    """
    Convenience function to create an `SSLClient` from a URL.
    """
    t = (url if isinstance(url, ParseResult) else urlparse(url))
    if t.scheme != 'https':
        raise ValueError("scheme must be 'https', got {!r}".format(t.scheme))
    port = (443 if t.port is None else t.port)
    return SSLClient(sslctx, (t.hostname, port), **options)


class HTTPError(Exception):
    """
    Base class for exceptions raised based on HTTP response status.
    """

    def __init__(self, response, method, url):
        self.response = response
        self.data = (b'' if response.body is None else response.body.read())
        self.method = method
        self.url = url
        super().__init__()

    def __str__(self):
        return '{} {}: {} {}'.format(
            self.response.status, self.response.reason, self.method, self.url
        )

    def json(self):
        """
        Return the decoded JSON error body, or ``None`` if there isn't one.
        """
        try:
            return json.loads(self.data.decode())
        except ValueError:
            return None


class ClientError(HTTPError):
    """
    Base class for all 4xx Client Error exceptions.
    """


class BadRequest(ClientError):
    '400 Bad Request'

class Unauthorized(ClientError):
    '401 Unauthorized'

class Forbidden(ClientError):
    '403 Forbidden'

class NotFound(ClientError):
    '404 Not Found'

class MethodNotAllowed(ClientError):
    '405 Method Not Allowed'

class NotAcceptable(ClientError):
    '406 Not Acceptable'

class Conflict(ClientError):
    '409 Conflict'

class PreconditionFailed(ClientError):
    '412 Precondition Failed'

class BadContentType(ClientError):
    '415 Unsupported Media Type'

class ExpectationFailed(ClientError):
    '417 Expectation Failed'


class ServerError(HTTPError):
    """
    Used to raise exceptions for any 5xx Server Errors.
    """


errors = {
    400: BadRequest,
    401: Unauthorized,
    403: Forbidden,
    404: NotFound,
    405: MethodNotAllowed,
    406: NotAcceptable,
    409: Conflict,
    412: PreconditionFailed,
    415: BadContentType,
    417: ExpectationFailed,
}

# The transport's "content not found" condition is simply a 404:
ContentNotFound = NotFound


class CouchError(Exception):
    """
    Base class for errors about the *shape* of a CouchDB response.

    These are raised when CouchDB answered with a successful status, but the
    JSON it returned isn't what the operation requires.
    """


class BadResponse(CouchError):
    """
    Raised when a response isn't the JSON object or array that was expected.
    """


class DatabaseUnavailable(CouchError):
    """
    Raised when ``GET /_all_dbs`` doesn't return a JSON array.
    """


class DatabaseError(CouchError):
    """
    Base class for database lifecycle failures reported by CouchDB.
    """

    action = 'database error'

    def __init__(self, name, reason=None):
        self.name = name
        self.reason = reason
        msg = '{}: {!r}'.format(self.action, name)
        if reason:
            msg = '{}: {}'.format(msg, reason)
        super().__init__(msg)


class DatabaseNotCreatable(DatabaseError):
    action = 'cannot create database'


class DatabaseNotDeletable(DatabaseError):
    action = 'cannot delete database'


def dumps(obj, pretty=False):
    """
    Safe and opinionated use of ``json.dumps()``.

    This function always calls ``json.dumps()`` with *ensure_ascii=False* and
    *sort_keys=True*.

    For example:

    >>> dumps({'name': 'мир', 'password': None})
    '{"name":"мир","password":null}'

    By default compact encoding is used, but if you supply *pretty=True*,
    4-space indentation will be used:

    >>> print(dumps({'ok': True}, pretty=True))
    {
        "ok": true
    }

    """
    if pretty:
        return json.dumps(obj,
            ensure_ascii=False,
            sort_keys=True,
            separators=(',',': '),
            indent=4,
        )
    return json.dumps(obj,
        ensure_ascii=False,
        sort_keys=True,
        separators=(',',':'),
    )


def _json_body(obj):
    if obj is None:
        return None
    if isinstance(obj, bytes):
        return obj
    return dumps(obj).encode()


def _queryiter(options):
    """
    Return appropriately encoded (key, value) pairs sorted by key.

    We JSON encode the value if the key is "key", "startkey", or "endkey", or
    if the value is not an ``str``.
    """
    for key in sorted(options):
        value = options[key]
        if key in ('key', 'startkey', 'endkey') or not isinstance(value, str):
            value = json.dumps(value, sort_keys=True, separators=(',',':'))
        yield (key, value)


def basic_auth_header(user):
    b = '{}:{}'.format(user.username, user.password).encode()
    return 'Basic ' + b64encode(b).decode()


def build_ssl_context(config):
    if 'context' in config:
        ctx = config['context']
        assert isinstance(ctx, ssl.SSLContext)
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        return ctx
    return build_client_sslctx(config)


def check_auth_mode(mode):
    """
    Normalize and validate an auth mode name.

    >>> check_auth_mode('Cookie')
    'cookie'

    """
    if not isinstance(mode, str):
        raise TypeError('auth mode must be a `str`; got {!r}'.format(mode))
    name = mode.lower()
    if name not in AUTH_MODES:
        raise ValueError(
            'auth mode must be one of {!r}; got {!r}'.format(AUTH_MODES, mode)
        )
    return name


def parse_url(url):
    t = urlparse(url)
    if t.scheme not in ('http', 'https'):
        raise ValueError(
            'url scheme must be http or https; got {!r}'.format(url)
        )
    if not t.netloc:
        raise ValueError('bad url: {!r}'.format(url))
    return t


def parse_major_version(version):
    """
    Return the major version number in *version*, or -1 if there isn't one.

    For example:

    >>> parse_major_version('2.3.1')
    2
    >>> parse_major_version('1.6')
    1
    >>> parse_major_version('bogus')
    -1

    """
    m = re.match(r'\s*([+-]?\d+)', version.split('.', 1)[0])
    if m is None:
        return -1
    return int(m.group(1))


def is_reserved_db_name(name):
    """
    Return True if *name* is an internal CouchDB database.

    >>> is_reserved_db_name('_users')
    True
    >>> is_reserved_db_name('shards/00000000-1fffffff/foo.1479242311')
    True
    >>> is_reserved_db_name('reports')
    False

    """
    return name.startswith('_') or name.startswith('shards/')


def db_path(name):
    """
    Return the request path for the database *name*.

    >>> db_path('shards/foo')
    'shards%2Ffoo'

    """
    return quote(name, safe='')


def user_doc_path(name):
    """
    Return the request path for the user document of *name*.

    >>> user_doc_path('alice')
    '_users/org.couchdb.user:alice'

    """
    return '_users/' + USER_PREFIX + quote(name, safe='')


def check_status(response, method, path):
    if response.status >= 500:
        raise ServerError(response, method, path)
    if response.status >= 400:
        E = errors.get(response.status, ClientError)
        raise E(response, method, path)


def _session_cookie(value):
    """
    Return ``(is_session, cookie)`` for a Set-Cookie header *value*.

    Cookies other than AuthSession give ``(False, None)``.  An AuthSession
    cookie with an empty value gives ``(True, None)``, meaning the session
    was dropped:

    >>> _session_cookie('AuthSession=abc; Path=/; HttpOnly')
    (True, 'AuthSession=abc')
    >>> _session_cookie('AuthSession=; Path=/')
    (True, None)
    >>> _session_cookie('SERVERID=lb1; Path=/')
    (False, None)

    """
    cookie = value.split(';', 1)[0].strip()
    (key, sep, token) = cookie.partition('=')
    if key.strip() != SESSION_COOKIE_NAME or not sep:
        return (False, None)
    return (True, (cookie if token else None))


class Communication:
    """
    The HTTP transport shared by a `Connection` and everything it hands out.

    A `Communication` knows the server URL, the `User` and auth mode, and any
    session cookie CouchDB has given us.  Each thread gets its own reusable
    ``degu.client.Connection``.

    For example:

    >>> comm = Communication('http://localhost:5984/')
    >>> comm.url
    'http://localhost:5984/'
    >>> comm.get_auth_mode()
    'none'
    >>> comm = Communication({'basic': {'username': 'joe', 'password': 'pw'}})
    >>> comm.get_user()
    User(username='joe', password='pw')
    >>> comm.get_auth_mode()
    'basic'

    The auth mode and cookie are guarded by `Communication.lock`.  Code that
    needs a mode to stay put across several requests (like
    `Connection.login()`) should hold the lock for the whole sequence.
    """

    __slots__ = (
        'env', 'basepath', 't', 'url', 'threadlocal', 'client',
        'user', 'auth_mode', 'cookie', 'timeout', 'lock',
    )

    def __init__(self, env=None, user=None, auth_mode=None):
        if env is None:
            env = DEFAULT_URL
        if not isinstance(env, (dict, str)):
            raise TypeError(
                'env must be a `dict` or `str`; got {!r}'.format(env)
            )
        self.env = ({'url': env} if isinstance(env, str) else env)
        if user is None and 'basic' in self.env:
            basic = self.env['basic']
            user = User(basic['username'], basic['password'])
        if auth_mode is None:
            auth_mode = self.env.get('auth')
        if auth_mode is None:
            auth_mode = (AUTH_NONE if user is None else AUTH_BASIC)
        self.user = user
        self.auth_mode = check_auth_mode(auth_mode)
        self.cookie = None
        self.timeout = self.env.get('timeout')
        self.lock = threading.RLock()
        self._set_url(self.env.get('url', DEFAULT_URL))

    def _set_url(self, url):
        t = parse_url(url)
        self.basepath = (t.path if t.path.endswith('/') else t.path + '/')
        self.t = t
        self.url = self.full_url(self.basepath)
        self._build_client()

    def _build_client(self):
        options = {}
        if self.timeout is not None:
            options['timeout'] = self.timeout
        if self.t.scheme == 'https':
            sslconfig = self.env.get('ssl', {})
            sslctx = build_ssl_context(sslconfig)
            self.client = create_sslclient(sslctx, self.t, **options)
        else:
            self.client = create_client(self.t, **options)
        self.threadlocal = threading.local()

    def full_url(self, path):
        return ''.join([self.t.scheme, '://', self.t.netloc, path])

    def get_threadlocal_connection(self):
        conn = getattr(self.threadlocal, 'connection', None)
        if conn is None or conn.closed:
            conn = self.client.connect()
            self.threadlocal.connection = conn
        return conn

    def get_server_url(self):
        return self.url

    def set_server_url(self, url):
        with self.lock:
            self._set_url(url)
            self.cookie = None

    def get_timeout(self):
        return self.timeout

    def set_timeout(self, timeout):
        self.timeout = timeout
        self._build_client()

    def get_user(self):
        return self.user

    def set_user(self, user):
        if not (user is None or isinstance(user, User)):
            raise TypeError('user must be a `User`; got {!r}'.format(user))
        with self.lock:
            self.user = user

    def get_auth_mode(self):
        return self.auth_mode

    def set_auth_mode(self, mode):
        mode = check_auth_mode(mode)
        with self.lock:
            self.auth_mode = mode

    def get_auth_headers(self):
        with self.lock:
            if self.auth_mode == AUTH_COOKIE and self.cookie is not None:
                return {'cookie': self.cookie}
            if self.auth_mode != AUTH_NONE and self.user is not None:
                return {'authorization': basic_auth_header(self.user)}
            return {}

    def capture_cookie(self, headers):
        value = headers.get('set-cookie')
        if value is None:
            return
        (is_session, cookie) = _session_cookie(value)
        if not is_session:
            return
        with self.lock:
            self.cookie = cookie

    def raw_request(self, method, path, body, headers):
        conn = self.get_threadlocal_connection()
        # We automatically retry once in case connection was closed by server:
        try:
            return conn.request(method, path, headers, body)
        except ConnectionError:
            pass
        conn = self.get_threadlocal_connection()
        return conn.request(method, path, headers, body)

    def send(self, method, path, options=None, body=None, headers=None):
        h = {'user-agent': USER_AGENT}
        if headers:
            h.update(headers)
        fullpath = self.basepath + path.lstrip('/')
        query = (tuple(_queryiter(options)) if options else tuple())
        h.update(self.get_auth_headers())
        if query:
            fullpath = '?'.join([fullpath, urlencode(query)])
        response = self.raw_request(method, fullpath, body, h)
        self.capture_cookie(response.headers)
        return (response, fullpath)

    def request(self, method, path, options=None, body=None, headers=None):
        (response, fullpath) = self.send(method, path, options, body, headers)
        check_status(response, method, fullpath)
        return response

    def recv_json(self, method, path, options=None, body=None, headers=None,
            tolerate_empty=False):
        if headers is None:
            headers = {}
        headers['accept'] = 'application/json'
        response = self.request(method, path, options, body, headers)
        data = (b'' if response.body is None else response.body.read())
        if not data.strip():
            if tolerate_empty:
                return None
            raise BadResponse(
                'empty response body: {} {}'.format(method, path)
            )
        return json.loads(data.decode())

    def issue(self, path, method='GET', body=None, tolerate_empty=False):
        """
        Make a *method* request to *path* and return the decoded JSON.

        *body*, when not ``None``, is JSON encoded.  An empty response body
        raises `BadResponse` unless *tolerate_empty* is true, in which case
        ``None`` is returned.
        """
        headers = None
        if body is not None:
            headers = {'content-type': 'application/json'}
        return self.recv_json(method, path, None, _json_body(body), headers,
            tolerate_empty
        )

    def head(self, path, options=None):
        """
        Make a HEAD request, returning the response headers.
        """
        response = self.request('HEAD', path, options)
        return response.headers

    def probe(self, path):
        """
        Return True if *path* exists, False if CouchDB answers 404.

        Unlike `Communication.head()`, a missing resource is not an
        exception.  Any other error status is still raised.
        """
        (response, fullpath) = self.send('HEAD', path)
        if response.status == 404:
            return False
        check_status(response, 'HEAD', fullpath)
        return True


class Database:
    """
    A handle on one database, sharing the `Communication` it was created with.

    For example:

    >>> db = Database('reports', Communication('http://localhost:5984/'))
    >>> db
    Database('reports', 'http://localhost:5984/')
    >>> db.name
    'reports'

    Creating a `Database` makes no request; whether the database exists is a
    fact on the server, which `Database.exists()` will ask about.
    """

    def __init__(self, name, comm):
        self.name = name
        self.comm = comm
        self.path = db_path(name)

    def __repr__(self):
        return '{}({!r}, {!r})'.format(
            self.__class__.__name__, self.name, self.comm.url
        )

    def _path(self, parts):
        return '/'.join((self.path,) + parts)

    def connection(self):
        """
        Create a `Connection` with the same `Communication` as this `Database`.
        """
        return Connection(comm=self.comm)

    def exists(self):
        return self.comm.probe(self.path)

    def info(self):
        return self.get()

    def post(self, obj, *parts, **options):
        return self.comm.recv_json('POST', self._path(parts), options,
            _json_body(obj), {'content-type': 'application/json'}
        )

    def put(self, obj, *parts, **options):
        return self.comm.recv_json('PUT', self._path(parts), options,
            _json_body(obj), {'content-type': 'application/json'}
        )

    def get(self, *parts, **options):
        return self.comm.recv_json('GET', self._path(parts), options)

    def delete(self, *parts, **options):
        return self.comm.recv_json('DELETE', self._path(parts), options)

    def head(self, *parts, **options):
        return self.comm.head(self._path(parts), options)


def _check_ok(result, name, error):
    if not isinstance(result, dict):
        raise BadResponse(
            'expected a JSON object for {!r}; got {!r}'.format(name, result)
        )
    if 'error' in result:
        raise error(name, result.get('reason'))
    if result.get('ok') is not True:
        raise error(name)


class Connection:
    """
    Session-level client for a CouchDB server.

    For example:

    >>> conn = Connection({
    ...     'url': 'http://localhost:5984/',
    ...     'basic': {'username': 'admin', 'password': 'secret'},
    ...     'auth': 'cookie',
    ... })
    >>> conn.get_user()
    User(username='admin', password='secret')
    >>> conn.get_auth_mode()
    'cookie'

    A `Connection` can also wrap an existing `Communication`:

    >>> comm = Communication('http://localhost:5984/')
    >>> Connection(comm=comm).comm is comm
    True

    The `Communication` is shared with every `Database` (and cluster or node
    connection) this `Connection` creates.  It is safe to use them from
    several threads: the auth mode and session cookie are only changed while
    holding ``Communication.lock``, and `Connection.login()` holds it for its
    whole request sequence.
    """

    def __init__(self, env=None, user=None, auth_mode=None, comm=None):
        if comm is None:
            comm = Communication(env, user, auth_mode)
        self.comm = comm
        self._info = None
        self._info_url = None

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.comm.url)

    def lowest_level(self):
        return self.comm

    def get_timeout(self):
        return self.comm.get_timeout()

    def set_timeout(self, timeout):
        self.comm.set_timeout(timeout)
        return self

    def get_server_url(self):
        return self.comm.get_server_url()

    def set_server_url(self, url):
        """
        Point this connection at *url*.

        The cached `ServerInfo` is dropped, so the version of the new server
        will be detected on next use.  Other connections sharing the same
        `Communication` notice the new URL on their next version lookup.
        """
        self.comm.set_server_url(url)
        self._info = None
        self._info_url = None
        return self

    def get_user(self):
        return self.comm.get_user()

    def set_user(self, user):
        self.comm.set_user(user)
        return self

    def get_auth_mode(self):
        return self.comm.get_auth_mode()

    def set_auth_mode(self, mode):
        self.comm.set_auth_mode(mode)
        return self

    ############################
    # Authentication

    def _credentials(self):
        user = self.comm.get_user()
        if user is None:
            raise ValueError('no user credentials for {!r}'.format(self))
        return {'name': user.username, 'password': user.password}

    def login(self):
        """
        Log in to CouchDB with the configured `User`.

        What this does depends on the current auth mode:

            * ``'none'`` - nothing, no request is made

            * ``'basic'`` - `Connection.validate_credentials()`

            * ``'cookie'`` - `Connection.establish_session()`

        Returns this `Connection`.
        """
        with self.comm.lock:
            mode = self.comm.get_auth_mode()
            if mode == AUTH_BASIC:
                self.validate_credentials()
            elif mode == AUTH_COOKIE:
                self.establish_session()
        return self

    def establish_session(self):
        """
        POST the credentials to /_session and keep the session cookie.

        The POST is always sent with Basic auth (never with a stale cookie).
        The auth mode is the same afterward as it was before, whether or not
        the request succeeded.
        """
        comm = self.comm
        with comm.lock:
            obj = self._credentials()
            previous = comm.get_auth_mode()
            comm.set_auth_mode(AUTH_BASIC)
            try:
                comm.issue('_session', 'POST', obj)
            finally:
                comm.set_auth_mode(previous)
            log.info('session established for %r at %s', obj['name'], comm.url)
        return self

    def validate_credentials(self):
        """
        Check the credentials with CouchDB without keeping a session.

        This creates a session with POST /_session and then immediately drops
        it with DELETE /_session.  If dropping the session fails, the auth mode
        is restored before the exception is re-raised.
        """
        comm = self.comm
        with comm.lock:
            obj = self._credentials()
            previous = comm.get_auth_mode()
            comm.set_auth_mode(AUTH_BASIC)
            try:
                comm.issue('_session', 'POST', obj)
                comm.set_auth_mode(AUTH_COOKIE)
                try:
                    self.logout()
                except Exception:
                    log.warning('could not drop session for %r at %s',
                        obj['name'], comm.url
                    )
                    raise
            finally:
                comm.set_auth_mode(previous)
            log.info('credentials validated for %r at %s', obj['name'], comm.url)
        return self

    def logout(self):
        """
        Drop the server-side session when in ``'cookie'`` mode.

        The auth mode itself is left alone.
        """
        comm = self.comm
        with comm.lock:
            if comm.get_auth_mode() == AUTH_COOKIE:
                comm.issue('_session', 'DELETE')
                comm.cookie = None
                log.info('logged out of %s', comm.url)
        return self

    def get_login_info(self):
        """
        Return the GET /_session info in ``'cookie'`` mode, otherwise None.
        """
        if self.comm.get_auth_mode() == AUTH_COOKIE:
            return self.comm.issue('_session')

    ############################
    # Version and capabilities

    def get_couchdb_info(self):
        """
        Return the `ServerInfo` for this server, requesting it only once.

        The cache is tied to the server URL, so it is refreshed when the
        shared `Communication` is pointed somewhere else.
        """
        url = self.comm.url
        if self._info is None or self._info_url != url:
            self._info = None
            result = self.comm.issue('', tolerate_empty=True)
            if not isinstance(result, dict):
                raise BadResponse(
                    'expected a JSON object from {}; got {!r}'.format(
                        self.comm.url, result
                    )
                )
            version = result.get('version')
            if not isinstance(version, str):
                version = ''
            self._info = ServerInfo(version, parse_major_version(version))
            self._info_url = url
        return self._info

    def get_couchdb_version(self):
        return self.get_couchdb_info().version

    def get_major_version(self):
        return self.get_couchdb_info().major

    def get_supports_clusters(self):
        return self.get_major_version() >= 2

    def upgrade_to_cluster_connection(self, node_local_port=LOCAL_NODE_PORT):
        """
        Return a `ClusterConnection`, or None if clustering isn't supported.
        """
        # Imported here because cushion.cluster imports from this module:
        from .cluster import ClusterConnection
        if self.get_supports_clusters():
            return ClusterConnection(self.comm, node_local_port)

    def upgrade_to_node_connection(self, node_local_port=LOCAL_NODE_PORT):
        """
        Return a `NodeConnection` for this server.

        Before CouchDB 2.0 this is the server itself (with an empty node name).
        On a cluster it's the first node reported by the cluster, or None when
        the cluster reports no nodes.
        """
        from .cluster import ClusterConnection, NodeConnection
        if not self.get_supports_clusters():
            return NodeConnection(self.comm, node_local_port, '')
        cluster = ClusterConnection(self.comm, node_local_port)
        return next(iter(cluster), None)

    def get_uuids(self, count=10):
        result = self.comm.recv_json('GET', '_uuids', {'count': count})
        if not isinstance(result, dict):
            raise BadResponse('expected a JSON object; got {!r}'.format(result))
        uuids = result.get('uuids')
        if not isinstance(uuids, list):
            raise BadResponse('expected a uuids array; got {!r}'.format(uuids))
        return uuids

    def get_active_tasks(self):
        result = self.comm.issue('_active_tasks')
        if not isinstance(result, list):
            raise BadResponse('expected a JSON array; got {!r}'.format(result))
        return result

    ############################
    # Databases

    def _all_db_names(self):
        result = self.comm.issue('_all_dbs')
        if not isinstance(result, list):
            raise DatabaseUnavailable(
                'expected a JSON array from /_all_dbs; got {!r}'.format(result)
            )
        return result

    def list_all_db_names(self):
        return self._all_db_names()

    def list_db_names(self):
        """
        List the database names, minus the reserved ones.

        Names starting with "_" and cluster "shards/" are left out.
        """
        return [
            name for name in self._all_db_names()
            if not is_reserved_db_name(name)
        ]

    def list_all_dbs(self):
        return [Database(name, self.comm) for name in self.list_all_db_names()]

    def list_dbs(self):
        return [Database(name, self.comm) for name in self.list_db_names()]

    def get_db(self, name):
        """
        Return a `Database` for *name*, raising `ContentNotFound` if missing.
        """
        self.comm.head(db_path(name))
        return Database(name, self.comm)

    def db_exists(self, name):
        return Database(name, self.comm).exists()

    def create_db(self, name):
        try:
            result = self.comm.issue(db_path(name), 'PUT')
        except (BadRequest, PreconditionFailed) as e:
            result = e.json()
            if not isinstance(result, dict):
                raise DatabaseNotCreatable(name) from e
        _check_ok(result, name, DatabaseNotCreatable)
        log.info('created database %r', name)
        return Database(name, self.comm)

    def remove_db(self, name):
        """
        Delete the database *name*.

        Note that this is irreversible!
        """
        try:
            result = self.comm.issue(db_path(name), 'DELETE')
        except BadRequest as e:
            result = e.json()
            if not isinstance(result, dict):
                raise DatabaseNotDeletable(name) from e
        _check_ok(result, name, DatabaseNotDeletable)
        log.info('deleted database %r', name)
        return self

    def ensure_db_exists(self, name):
        """
        Return a `Database` for *name*, creating it when it doesn't exist.

        Calling this when the database already exists makes a single HEAD
        request and no PUT.  If another client creates the database between
        the HEAD and the PUT, the resulting error is absorbed.
        """
        db = Database(name, self.comm)
        if db.exists():
            return db
        try:
            self.create_db(name)
        except DatabaseNotCreatable as e:
            if not db.exists():
                raise
            log.info('database %r created concurrently: %s', name, e)
        return db

    def ensure_db_is_deleted(self, name):
        """
        Delete the database *name* if it exists.

        Returns this `Connection`.
        """
        if not self.db_exists(name):
            return self
        try:
            self.remove_db(name)
        except (ContentNotFound, DatabaseNotDeletable) as e:
            log.info('database %r already gone: %s', name, e)
        return self

    ############################
    # Users

    def create_user(self, name, password=None, roles=None):
        """
        Create (or update) the CouchDB user *name*.

        *name* can also be a `User`, in which case its password is used.  An
        empty password is sent as null.  Returns the raw CouchDB response.
        """
        if isinstance(name, User):
            (name, password) = name
        if roles is None:
            roles = []
        doc = {
            'name': name,
            'password': (password if password else None),
            'type': 'user',
        }
        if isinstance(roles, (list, tuple)):
            doc['roles'] = list(roles)
        return self.comm.issue(user_doc_path(name), 'PUT', doc)

    def get_user_info(self, name):
        return self.comm.issue(user_doc_path(name))

    def delete_user(self, name, rev=None):
        options = ({} if rev is None else {'rev': rev})
        return self.comm.recv_json('DELETE', user_doc_path(name), options)

    def list_user_names(self):
        result = self.comm.issue('_users/_all_docs')
        if not (isinstance(result, dict) and isinstance(result.get('rows'), list)):
            raise BadResponse(
                'expected a JSON object with a rows array; got {!r}'.format(
                    result
                )
            )
        names = []
        for row in result['rows']:
            _id = (row.get('id') if isinstance(row, dict) else None)
            if not isinstance(_id, str) or _id.startswith('_'):
                continue
            if _id.startswith(USER_PREFIX):
                _id = _id[len(USER_PREFIX):]
            if _id:
                names.append(_id)
        return names
