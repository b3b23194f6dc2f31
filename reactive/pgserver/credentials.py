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

'''
Credentials used to administer and replicate the PostgreSQL server.

The administrative password is generated once per node and kept in the
node state store, a charmhelpers.core.unitdata.Storage. Replication
credentials are always supplied by the operator.
'''
from collections import namedtuple
import secrets

from charmhelpers.core import hookenv

from reactive.pgserver import preflight


PASSWORD_KEY = 'pgserver.password.postgres'

SUPERUSER = 'postgres'


Credential = namedtuple('Credential', ['username', 'password'])


def pwgen(length=32):
    '''Generate a random password safe to embed in a connection string.'''
    return secrets.token_urlsafe(length)


def replication_credential(config):
    '''The replication credential, or None if it is not configured.'''
    username = (config.get('recovery_user') or '').strip()
    password = config.get('recovery_user_pass') or ''
    if username and password:
        return Credential(username, password)
    return None


class SecretProvisioner(object):
    '''Generates and persists the administrative credential.

    With no store, or in solo mode, nothing can be persisted between
    runs and the password must be provided in configuration.
    '''
    def __init__(self, store=None, solo=False):
        self.store = store
        self.solo = solo or store is None

    def ensure_administrative_credential(self, config):
        configured = config.get('postgres_password')
        if configured:
            return Credential(SUPERUSER, configured)

        if self.solo:
            # Raises, listing every missing attribute.
            preflight.check_solo_attributes(config)

        persisted = self.store.get(PASSWORD_KEY)
        if persisted:
            return Credential(SUPERUSER, persisted)

        hookenv.log('Generating password for the {} role'.format(SUPERUSER))
        password = pwgen()
        self.store.set(PASSWORD_KEY, password)
        self.store.flush()
        return Credential(SUPERUSER, password)
