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

import grp
import os
import pwd
import re
import shutil
import tempfile


class RetryableError(Exception):
    '''A failure that may succeed if the operation is attempted again.'''


def os_release(path='/etc/os-release'):
    '''Parse os-release(5) into a dictionary.

    Missing files give an empty dictionary, leaving the caller to
    decide if an unknown platform is fatal.
    '''
    release = {}
    if not os.path.exists(path):
        return release
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = line.split('=', 1)
            release[key] = value.strip().strip('"\'')
    return release


# Checked in order. ID is matched before ID_LIKE, so Fedora is not
# mistaken for RHEL and CentOS is not mistaken for Fedora.
_FAMILIES = [
    ('debian', {'debian', 'ubuntu'}),
    ('fedora', {'fedora'}),
    ('rhel', {'rhel', 'centos', 'rocky', 'almalinux', 'ol', 'redhat'}),
    ('suse', {'suse', 'sles', 'sled', 'opensuse', 'opensuse-leap',
              'opensuse-tumbleweed'}),
]


def platform_family(release):
    '''Return the platform family, eg. 'debian', 'rhel', 'fedora' or 'suse'.

    Returns None if the platform is not recognized.
    '''
    platform_id = release.get('ID', '').lower()
    for family, ids in _FAMILIES:
        if platform_id in ids:
            return family
    # ID_LIKE is ordered most similar first, eg. "rhel centos fedora".
    for like in release.get('ID_LIKE', '').lower().split():
        for family, ids in _FAMILIES:
            if like in ids:
                return family
    return None


def platform_version(release):
    '''The major version of the platform as an integer, or 0 if unknown.'''
    m = re.match(r'^(\d+)', release.get('VERSION_ID', ''))
    return int(m.group(1)) if m else 0


def write(path, content, mode=0o640, user='root', group='root'):
    '''Write a file atomically.

    Ownership is left alone if user is None.
    '''
    open_mode = 'wb' if isinstance(content, bytes) else 'w'
    dirname = os.path.dirname(os.path.abspath(path))
    with tempfile.NamedTemporaryFile(mode=open_mode, dir=dirname,
                                     delete=False) as f:
        try:
            f.write(content)
            f.flush()
            if user is not None:
                shutil.chown(f.name, user, group)
            os.chmod(f.name, mode)
            os.replace(f.name, path)
        finally:
            if os.path.exists(f.name):
                os.unlink(f.name)


def makedirs(path, mode=0o750, user='root', group='root'):
    if os.path.exists(path):
        assert os.path.isdir(path), '{} is not a directory'.format(path)
    else:
        # Don't specify mode here, to ensure parent dirs are traversable.
        os.makedirs(path)
    if user is not None:
        shutil.chown(path, user, group)
    os.chmod(path, mode)


def empty_directory(path):
    '''Remove the contents of a directory, leaving the directory itself.

    The directory may be a mount point or the target of a symlink,
    so it is never removed and recreated.
    '''
    for name in os.listdir(path):
        child = os.path.join(path, name)
        if os.path.isdir(child) and not os.path.islink(child):
            shutil.rmtree(child)
        else:
            os.unlink(child)


def chown_tree(path, user, group):
    '''Recursively chown a tree, not following symlinks.'''
    if user is None:
        return
    uid = pwd.getpwnam(user).pw_uid
    gid = grp.getgrnam(group).gr_gid
    os.chown(path, uid, gid)
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            os.chown(os.path.join(root, name), uid, gid,
                     follow_symlinks=False)


def is_systemd():
    '''True if the host was booted with systemd.'''
    return os.path.isdir('/run/systemd/system')


def truthy(value):
    '''Interpret a configuration value as a boolean.

    Accepts real booleans and the on/off, yes/no, true/false strings
    used in PostgreSQL style configuration.
    '''
    if isinstance(value, str):
        return value.strip().lower() in ('on', 'yes', 'true', '1')
    return bool(value)
