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
import sys
import unittest
from unittest.mock import call, patch

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
sys.path.insert(1, ROOT)

from charmhelpers.core import hookenv
from charmhelpers.core.hookenv import WARNING
from charms import reactive

from reactive import workloadstatus


class TestWorkloadStatus(unittest.TestCase):
    @patch.object(reactive, 'toggle_state')
    @patch.object(hookenv, 'log')
    @patch.object(hookenv, 'status_set')
    def test_status_set(self, status_set, log, toggle_state):
        workloadstatus.status_set('blocked', 'Broken')
        status_set.assert_called_once_with('blocked', 'Broken')
        log.assert_called_once_with('blocked: Broken', WARNING)
        toggle_state.assert_has_calls([
            call('workloadstatus.maintenance', False),
            call('workloadstatus.blocked', True),
            call('workloadstatus.waiting', False),
            call('workloadstatus.active', False)])

    @patch.object(reactive, 'toggle_state')
    @patch.object(hookenv, 'log')
    @patch.object(hookenv, 'status_set')
    @patch.object(hookenv, 'status_get')
    def test_status_set_keep_state(self, status_get, status_set, log,
                                   toggle_state):
        status_get.return_value = ('unknown', '')
        workloadstatus.status_set(None, 'Thinking')
        status_set.assert_called_once_with('maintenance', 'Thinking')

    @patch.object(workloadstatus, 'status_set')
    def test_blocked(self, status_set):
        with self.assertRaises(SystemExit) as cm:
            workloadstatus.blocked('Bad config', exit_code=1)
        self.assertEqual(cm.exception.code, 1)
        status_set.assert_called_once_with('blocked', 'Bad config')
