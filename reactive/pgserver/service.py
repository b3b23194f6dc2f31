# Copyright 2011-2026 Canonical Ltd.
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

from charmhelpers.core import hookenv
from charmhelpers.core.hookenv import DEBUG, ERROR

from reactive.pgserver import helpers


class ServiceError(Exception):
    '''A service verb failed.'''


class ServiceTimeout(helpers.RetryableError, ServiceError):
    '''A service verb did not complete in time.'''


class ServiceController(object):
    '''Start, stop and inspect the PostgreSQL service.

    systemctl is used on systemd hosts, and the SysV service(8) wrapper
    everywhere else. Every verb is bounded by timeout seconds.
    '''
    def __init__(self, name, timeout=300):
        self.name = name
        self.timeout = timeout

    def command(self, action):
        if helpers.is_systemd():
            return ['systemctl', action, self.name]
        return ['service', self.name, action]

    def _call(self, cmd):
        hookenv.log('Running {}'.format(' '.join(cmd)), DEBUG)
        try:
            return subprocess.run(cmd, stdout=subprocess.PIPE,
                                  stderr=subprocess.STDOUT,
                                  universal_newlines=True,
                                  timeout=self.timeout)
        except subprocess.TimeoutExpired:
            hookenv.log('{} did not complete within {}s'
                        ''.format(' '.join(cmd), self.timeout), ERROR)
            raise ServiceTimeout('{} {} timed out after {}s'
                                 ''.format(cmd[0], self.name, self.timeout))

    def _run(self, action):
        cmd = self.command(action)
        proc = self._call(cmd)
        if proc.returncode != 0:
            hookenv.log(proc.stdout, ERROR)
            raise ServiceError('Failed to {} {} (exit {})'
                               ''.format(action, self.name, proc.returncode))
        hookenv.log('{} {}'.format(action, self.name))

    def start(self):
        self._run('start')

    def stop(self):
        self._run('stop')

    def restart(self):
        self._run('restart')

    def reload(self):
        self._run('reload')

    def enable(self):
        if helpers.is_systemd():
            cmd = ['systemctl', 'enable', self.name]
        elif os.path.exists('/sbin/chkconfig'):
            cmd = ['chkconfig', self.name, 'on']
        else:
            cmd = ['update-rc.d', self.name, 'defaults']
        proc = self._call(cmd)
        if proc.returncode != 0:
            hookenv.log(proc.stdout, ERROR)
            raise ServiceError('Failed to enable {}'.format(self.name))

    def is_running(self):
        if helpers.is_systemd():
            cmd = ['systemctl', 'is-active', '--quiet', self.name]
        else:
            cmd = ['service', self.name, 'status']
        return self._call(cmd).returncode == 0
