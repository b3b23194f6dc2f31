# Copyright 2015-2026 Canonical Ltd.
#
# This file is part of the PostgreSQL Charm for Juju.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License version 3, as
# published by the Free Software Foundation.
#
# This program is distributed in the hope that it will be useful, but
# WITHOUT ANY WARRANTY; without even the implied warranties of
# MERCHANTABILITY, SATISFACTORY QUALITY, or FITNESS FOR A PARTICULAR
# PURPOSE.  See the GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.
import os.path
import subprocess
import sys
import unittest
from unittest.mock import patch

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
sys.path.insert(1, ROOT)

from charmhelpers.core import hookenv

from reactive.pgserver import helpers
from reactive.pgserver import service


class TestServiceController(unittest.TestCase):
    def setUp(self):
        patcher = patch.object(hookenv, 'log')
        patcher.start()
        self.addCleanup(patcher.stop)

        patcher = patch.object(helpers, 'is_systemd', return_value=True)
        self.is_systemd = patcher.start()
        self.addCleanup(patcher.stop)

        patcher = patch('subprocess.run')
        self.run = patcher.start()
        self.addCleanup(patcher.stop)
        self.run.side_effect = lambda cmd, **kw: subprocess.CompletedProcess(
            cmd, 0, stdout='')

        self.svc = service.ServiceController('postgresql@12-main',
                                             timeout=30)

    def test_systemd(self):
        self.svc.start()
        self.svc.stop()
        self.svc.restart()
        self.svc.reload()
        self.assertEqual([c[0][0] for c in self.run.call_args_list],
                         [['systemctl', 'start', 'postgresql@12-main'],
                          ['systemctl', 'stop', 'postgresql@12-main'],
                          ['systemctl', 'restart', 'postgresql@12-main'],
                          ['systemctl', 'reload', 'postgresql@12-main']])
        self.run.assert_called_with(
            ['systemctl', 'reload', 'postgresql@12-main'],
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            universal_newlines=True, timeout=30)

    def test_sysv(self):
        self.is_systemd.return_value = False
        self.svc.start()
        self.run.assert_called_once_with(
            ['service', 'postgresql@12-main', 'start'],
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            universal_newlines=True, timeout=30)

    def test_failure(self):
        self.run.side_effect = lambda cmd, **kw: subprocess.CompletedProcess(
            cmd, 1, stdout='Job failed')
        with self.assertRaises(service.ServiceError) as cm:
            self.svc.start()
        self.assertNotIsInstance(cm.exception, helpers.RetryableError)

    def test_timeout(self):
        self.run.side_effect = subprocess.TimeoutExpired(['systemctl'], 30)
        with self.assertRaises(service.ServiceTimeout) as cm:
            self.svc.stop()
        self.assertIsInstance(cm.exception, service.ServiceError)
        self.assertIsInstance(cm.exception, helpers.RetryableError)

    def test_is_running(self):
        self.assertTrue(self.svc.is_running())
        self.run.assert_called_once_with(
            ['systemctl', 'is-active', '--quiet', 'postgresql@12-main'],
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            universal_newlines=True, timeout=30)

        self.run.side_effect = lambda cmd, **kw: subprocess.CompletedProcess(
            cmd, 3, stdout='')
        self.assertFalse(self.svc.is_running())

        self.is_systemd.return_value = False
        self.svc.is_running()
        self.assertEqual(self.run.call_args[0][0],
                         ['service', 'postgresql@12-main', 'status'])

    @patch('os.path.exists')
    def test_enable(self, exists):
        self.svc.enable()
        self.assertEqual(self.run.call_args[0][0],
                         ['systemctl', 'enable', 'postgresql@12-main'])

        self.is_systemd.return_value = False
        exists.return_value = True
        self.svc.enable()
        self.assertEqual(self.run.call_args[0][0],
                         ['chkconfig', 'postgresql@12-main', 'on'])
        exists.assert_called_with('/sbin/chkconfig')

        exists.return_value = False
        self.svc.enable()
        self.assertEqual(self.run.call_args[0][0],
                         ['update-rc.d', 'postgresql@12-main', 'defaults'])

        self.run.side_effect = lambda cmd, **kw: subprocess.CompletedProcess(
            cmd, 1, stdout='')
        with self.assertRaises(service.ServiceError):
            self.svc.enable()
