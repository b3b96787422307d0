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
Unit tests for the `cushion.cluster` module.
"""

from unittest import TestCase

import cushion
from cushion import cluster
from cushion.tests import json_response, status_response, fake_comm


MEMBERSHIP = {
    'all_nodes': [
        'couchdb@node1.example.com',
        'couchdb@node2.example.com',
        'couchdb@node3.example.com',
    ],
    'cluster_nodes': [
        'couchdb@node1.example.com',
        'couchdb@node2.example.com',
    ],
}


class TestNodeConnection(TestCase):
    def test_init(self):
        comm = cushion.Communication()
        node = cluster.NodeConnection(comm)
        self.assertIs(node.comm, comm)
        self.assertEqual(node.node_local_port, cushion.LOCAL_NODE_PORT)
        self.assertEqual(node.name, '')
        self.assertEqual(repr(node), "NodeConnection('', 5986)")

        node = cluster.NodeConnection(comm, 15986, 'couchdb@127.0.0.1')
        self.assertEqual(node.node_local_port, 15986)
        self.assertEqual(node.name, 'couchdb@127.0.0.1')

    def test_node_url(self):
        comm = cushion.Communication('http://localhost:5984/')
        node = cluster.NodeConnection(comm)
        self.assertEqual(node.node_url(), 'http://localhost:5986/')

        comm = cushion.Communication('http://[::1]:5984/')
        node = cluster.NodeConnection(comm, 15986)
        self.assertEqual(node.node_url(), 'http://[::1]:15986/')

    def test_single_server_paths(self):
        (comm, conn) = fake_comm(
            json_response({'couchdb': {'uuid': 'abc'}}),
            json_response({'uuid': 'abc'}),
            json_response('abc'),
            json_response('info'),
            json_response({'couchdb': {}}),
        )
        node = cluster.NodeConnection(comm)
        self.assertEqual(node.get_config(), {'couchdb': {'uuid': 'abc'}})
        self.assertEqual(node.get_config('couchdb'), {'uuid': 'abc'})
        self.assertEqual(node.get_config('couchdb', 'uuid'), 'abc')
        self.assertEqual(node.set_config('log', 'level', 'debug'), 'info')
        self.assertEqual(node.get_stats(), {'couchdb': {}})
        self.assertEqual(conn.requests, [
            ('GET', '/_config'),
            ('GET', '/_config/couchdb'),
            ('GET', '/_config/couchdb/uuid'),
            ('PUT', '/_config/log/level'),
            ('GET', '/_stats'),
        ])
        self.assertEqual(conn.calls[3][3], b'"debug"')

    def test_named_node_paths(self):
        (comm, conn) = fake_comm(
            json_response({}),
            json_response('info'),
            json_response({}),
        )
        node = cluster.NodeConnection(comm, name='couchdb@127.0.0.1')
        node.get_config('log')
        node.set_config('log', 'level', 'debug')
        node.get_stats()
        self.assertEqual(conn.requests, [
            ('GET', '/_node/couchdb%40127.0.0.1/_config/log'),
            ('PUT', '/_node/couchdb%40127.0.0.1/_config/log/level'),
            ('GET', '/_node/couchdb%40127.0.0.1/_stats'),
        ])

    def test_bad_arguments(self):
        (comm, conn) = fake_comm()
        node = cluster.NodeConnection(comm)
        with self.assertRaises(ValueError) as cm:
            node.get_config(key='level')
        self.assertEqual(str(cm.exception), "key 'level' requires a section")
        with self.assertRaises(TypeError) as cm:
            node.set_config('log', 'level', 3)
        self.assertEqual(
            str(cm.exception),
            'value must be a `str`; got 3'
        )
        self.assertEqual(conn.calls, [])

    def test_errors_propagate(self):
        (comm, conn) = fake_comm(status_response(401, 'Unauthorized'))
        node = cluster.NodeConnection(comm, name='couchdb@127.0.0.1')
        with self.assertRaises(cushion.Unauthorized):
            node.get_config()


class TestClusterConnection(TestCase):
    def test_init(self):
        comm = cushion.Communication('http://localhost:5984/')
        inst = cluster.ClusterConnection(comm)
        self.assertIs(inst.comm, comm)
        self.assertEqual(inst.node_local_port, 5986)
        self.assertEqual(
            repr(inst),
            "ClusterConnection('http://localhost:5984/', 5986)"
        )
        inst = cluster.ClusterConnection(comm, 15986)
        self.assertEqual(inst.node_local_port, 15986)

    def test_get_membership(self):
        (comm, conn) = fake_comm(json_response(MEMBERSHIP))
        inst = cluster.ClusterConnection(comm)
        self.assertEqual(inst.get_membership(), MEMBERSHIP)
        self.assertEqual(conn.requests, [('GET', '/_membership')])

        bad = [
            [],
            {},
            {'all_nodes': [], 'cluster_nodes': None},
            {'all_nodes': 'couchdb@node1', 'cluster_nodes': []},
        ]
        for obj in bad:
            (comm, conn) = fake_comm(json_response(obj))
            inst = cluster.ClusterConnection(comm)
            with self.assertRaises(cushion.BadResponse):
                inst.get_membership()

    def test_list_node_names(self):
        (comm, conn) = fake_comm(
            json_response(MEMBERSHIP),
            json_response(MEMBERSHIP),
        )
        inst = cluster.ClusterConnection(comm)
        self.assertEqual(inst.list_node_names(), MEMBERSHIP['all_nodes'])
        self.assertEqual(
            inst.list_cluster_node_names(),
            MEMBERSHIP['cluster_nodes']
        )

    def test_iter(self):
        (comm, conn) = fake_comm(
            json_response(MEMBERSHIP),
            json_response(MEMBERSHIP),
        )
        inst = cluster.ClusterConnection(comm, 15986)
        nodes = list(inst)
        self.assertEqual(
            [node.name for node in nodes],
            MEMBERSHIP['all_nodes']
        )
        for node in nodes:
            self.assertIsInstance(node, cluster.NodeConnection)
            self.assertIs(node.comm, comm)
            self.assertEqual(node.node_local_port, 15986)
        self.assertEqual(
            [node.name for node in inst.nodes()],
            MEMBERSHIP['all_nodes']
        )
        self.assertEqual(conn.requests, [('GET', '/_membership')] * 2)

        (comm, conn) = fake_comm(
            json_response({'all_nodes': [], 'cluster_nodes': []}),
        )
        self.assertEqual(list(cluster.ClusterConnection(comm)), [])
