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
import re

import psycopg2
from psycopg2 import sql

from charmhelpers.core import hookenv
from charmhelpers.core.hookenv import DEBUG

from reactive.pgserver import helpers


VERSION_KEY = 'pgserver.pg_version'

# Version packaged by the distribution when none is configured, keyed
# by os-release VERSION_CODENAME, or by (ID, major VERSION_ID).
DEFAULT_VERSIONS = {
    'xenial': '9.5',
    'bionic': '10',
    'focal': '12',
    'jammy': '14',
    'noble': '16',
    'buster': '11',
    'bullseye': '13',
    'bookworm': '15',
    ('centos', 7): '9.2',
    ('rhel', 7): '9.2',
    ('centos', 8): '10',
    ('rhel', 8): '10',
    ('rocky', 8): '10',
    ('almalinux', 8): '10',
    ('centos', 9): '13',
    ('rhel', 9): '13',
    ('rocky', 9): '13',
    ('almalinux', 9): '13',
    ('fedora', 38): '15',
    ('fedora', 39): '15',
    ('fedora', 40): '16',
    ('opensuse-leap', 15): '14',
    ('sles', 15): '14',
}


def version(config, store=None, release=None):
    """PostgreSQL major version, as a string.

    The first version determined is cached in the node state store, so
    the same answer is given consistently even across OS upgrades.
    """
    if store is not None:
        cached = store.get(VERSION_KEY)
        if cached:
            return cached

    ver = (config.get('version') or '').strip()
    if not ver:
        if release is None:
            release = helpers.os_release()
        ver = default_version(release)

    if store is not None:
        store.set(VERSION_KEY, ver)
        store.flush()
    return ver


def default_version(release):
    codename = release.get('VERSION_CODENAME')
    if codename in DEFAULT_VERSIONS:
        return DEFAULT_VERSIONS[codename]
    key = (release.get('ID', ''), helpers.platform_version(release))
    try:
        return DEFAULT_VERSIONS[key]
    except KeyError:
        raise NotImplementedError('No default version for distro {} {}'
                                  ''.format(*key))


def parse_version(ver):
    '''Convert '9.6' or '12' to a tuple of integers for comparison.'''
    m = re.match(r'^\s*(\d+(?:\.\d+)*)', str(ver))
    if m is None:
        raise ValueError('Invalid PostgreSQL version {!r}'.format(ver))
    return tuple(int(part) for part in m.group(1).split('.'))


def has_version(ver, minimum):
    return parse_version(ver) >= parse_version(minimum)


def version_digits(ver):
    '''Version without the dot, as used in PGDG package names (9.6 -> 96).'''
    return ''.join(str(ver).split('.'))


def connect(port=5432, user='postgres', database='postgres'):
    # host=None connects over the local unix domain socket, which
    # relies on peer authentication for the postgres user.
    return psycopg2.connect(user=user, database=database, host=None,
                            port=port)


def role_exists(con, role):
    """True if the database role exists."""
    cur = con.cursor()
    cur.execute("SELECT TRUE FROM pg_roles WHERE rolname=%s", (role,))
    return cur.fetchone() is not None


def ensure_user(con, username, password, superuser=False, replication=False):
    if role_exists(con, username):
        cmd = ["ALTER ROLE"]
    else:
        cmd = ["CREATE ROLE"]
    cmd.append("{} WITH LOGIN")
    cmd.append("SUPERUSER" if superuser else "NOSUPERUSER")
    cmd.append("REPLICATION" if replication else "NOREPLICATION")
    cmd.append("ENCRYPTED PASSWORD %s")
    cur = con.cursor()
    cur.execute(sql.SQL(" ".join(cmd)).format(sql.Identifier(username)),
                (password,))


def set_password(con, username, password):
    '''Set the password of an existing role.

    The stored form is a one way hash, so there is no way to tell if
    the password is already set short of attempting to authenticate.
    '''
    cur = con.cursor()
    cur.execute(sql.SQL("ALTER ROLE {} WITH ENCRYPTED PASSWORD %s")
                .format(sql.Identifier(username)), (password,))


def pg_version_path(data_dir):
    return os.path.join(data_dir, 'PG_VERSION')


def recovery_conf_path(data_dir):
    return os.path.join(data_dir, 'recovery.conf')


def hot_standby_signal_path(data_dir):
    return os.path.join(data_dir, 'standby.signal')


def is_initialized(data_dir):
    return os.path.exists(pg_version_path(data_dir))


def is_secondary(data_dir):
    """True if the data directory belongs to a hot standby.

    PostgreSQL 12 replaced recovery.conf with standby.signal. Either
    is sufficient.
    """
    return (os.path.exists(recovery_conf_path(data_dir)) or
            os.path.exists(hot_standby_signal_path(data_dir)))


def ensure_ssl_links(data_dir, ver, cert_file=None, key_file=None):
    '''Link server.crt and server.key into the data directory.

    PostgreSQL before 9.2 has no ssl_cert_file or ssl_key_file settings
    and only looks in the data directory. Returns True if a link was
    created or changed.
    '''
    if has_version(ver, '9.2'):
        return False
    changed = False
    for name, target in (('server.crt', cert_file), ('server.key', key_file)):
        if not target:
            continue
        link = os.path.join(data_dir, name)
        if os.path.islink(link) and os.readlink(link) == target:
            hookenv.log('{} already links to {}'.format(link, target), DEBUG)
            continue
        if os.path.lexists(link):
            os.unlink(link)
        os.symlink(target, link)
        hookenv.log('Linked {} to {}'.format(link, target))
        changed = True
    return changed
