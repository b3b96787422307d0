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
Cluster and node connections for CouchDB.

CouchDB 2.0 introduced clustering.  A cluster is made of nodes, each with its
own configuration and statistics, which are reached through
``/_node/{name}/...``.  Before 2.0, there is just the one server, whose
configuration lives at ``/_config``.

You normally don't create these directly, but ask a `Connection` for one:

>>> from cushion import Connection
>>> conn = Connection('http://localhost:5984/')
>>> node = conn.upgrade_to_node_connection()  #doctest: +SKIP

On a CouchDB 1.x server ``node`` will be the server itself, with an empty
name.  On a cluster it will be the first node the cluster reports.

Both kinds of connection share the `Communication` of the `Connection` they
came from, so they use the same auth mode and session cookie.
"""

from urllib.parse import quote
import logging

from cushion import BadResponse, LOCAL_NODE_PORT


log = logging.getLogger()


class NodeConnection:
    """
    Configuration and statistics for a single CouchDB node.

    For example:

    >>> from cushion import Communication
    >>> comm = Communication('http://localhost:5984/')
    >>> node = NodeConnection(comm, 5986, 'couchdb@127.0.0.1')
    >>> node
    NodeConnection('couchdb@127.0.0.1', 5986)
    >>> node.node_url()
    'http://localhost:5986/'

    """

    def __init__(self, comm, node_local_port=LOCAL_NODE_PORT, name=''):
        self.comm = comm
        self.node_local_port = node_local_port
        self.name = name

    def __repr__(self):
        return '{}({!r}, {!r})'.format(
            self.__class__.__name__, self.name, self.node_local_port
        )

    def _path(self, *parts):
        parts = tuple(quote(p, safe='') for p in parts if p is not None)
        if self.name:
            parts = ('_node', quote(self.name, safe='')) + parts
        return '/'.join(parts)

    def node_url(self):
        """
        Return the URL of this node's node-local interface.
        """
        t = self.comm.t
        host = t.hostname
        if ':' in host:
            host = '[{}]'.format(host)
        return '{}://{}:{}/'.format(t.scheme, host, self.node_local_port)

    def get_config(self, section=None, key=None):
        if key is not None and section is None:
            raise ValueError('key {!r} requires a section'.format(key))
        return self.comm.issue(self._path('_config', section, key))

    def set_config(self, section, key, value):
        """
        Set a configuration value, returning the previous value.

        CouchDB only stores strings, so *value* must be a ``str``.
        """
        if not isinstance(value, str):
            raise TypeError('value must be a `str`; got {!r}'.format(value))
        log.info('setting [%s] %s on %r', section, key, self)
        path = self._path('_config', section, key)
        return self.comm.issue(path, 'PUT', value)

    def get_stats(self):
        return self.comm.issue(self._path('_stats'))


class ClusterConnection:
    """
    The nodes of a CouchDB 2.x cluster.

    Iterating yields a `NodeConnection` per node, in the order CouchDB lists
    them in ``all_nodes``.
    """

    def __init__(self, comm, node_local_port=LOCAL_NODE_PORT):
        self.comm = comm
        self.node_local_port = node_local_port

    def __repr__(self):
        return '{}({!r}, {!r})'.format(
            self.__class__.__name__, self.comm.url, self.node_local_port
        )

    def __iter__(self):
        for name in self.list_node_names():
            yield NodeConnection(self.comm, self.node_local_port, name)

    def get_membership(self):
        result = self.comm.issue('_membership')
        if not isinstance(result, dict):
            raise BadResponse(
                'expected a JSON object from /_membership; got {!r}'.format(
                    result
                )
            )
        for key in ('all_nodes', 'cluster_nodes'):
            if not isinstance(result.get(key), list):
                raise BadResponse(
                    'expected a {} array; got {!r}'.format(key, result.get(key))
                )
        return result

    def list_node_names(self):
        return self.get_membership()['all_nodes']

    def list_cluster_node_names(self):
        return self.get_membership()['cluster_nodes']

    def nodes(self):
        return list(self)
