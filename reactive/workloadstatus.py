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

__all__ = ['status_set', 'blocked']

from charmhelpers.core import hookenv
from charmhelpers.core.hookenv import INFO, WARNING

from charms import reactive


VALID_STATES = ('maintenance', 'blocked', 'waiting', 'active')


def status_set(state, message):
    """Set and log the workload status.

    Set state == None to keep the same state and just change the message.

    Exactly one of the workloadstatus.{maintenance,blocked,waiting,active}
    states is left set, so handlers can avoid clobbering a blocked status.
    """
    if state is None:
        state = hookenv.status_get()[0]
        if state not in VALID_STATES:
            state = 'maintenance'
    assert state in VALID_STATES, 'Invalid state {}'.format(state)
    hookenv.status_set(state, message)
    hookenv.log('{}: {}'.format(state, message),
                WARNING if state == 'blocked' else INFO)
    for s in VALID_STATES:
        reactive.toggle_state('workloadstatus.{}'.format(s), s == state)


def blocked(message, exit_code=0):
    '''Block the unit and terminate the run.

    With the default exit_code of 0 the run ends without error, and the
    operator is left to fix the problem named in message.
    '''
    status_set('blocked', message)
    raise SystemExit(exit_code)
