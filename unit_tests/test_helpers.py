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
import tempfile
from textwrap import dedent
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
sys.path.insert(1, ROOT)

from reactive.pgserver import helpers


class TestHelpers(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def test_os_release(self):
        path = os.path.join(self.tmpdir.name, 'os-release')
        with open(path, 'w') as f:
            f.write(dedent('''\
                NAME="Rocky Linux"
                # Comment
                ID="rocky"
                ID_LIKE="rhel centos fedora"
                VERSION_ID='8.9'

                PLATFORM_ID=platform:el8
                '''))
        release = helpers.os_release(path)
        self.assertEqual(release['NAME'], 'Rocky Linux')
        self.assertEqual(release['ID'], 'rocky')
        self.assertEqual(release['VERSION_ID'], '8.9')
        self.assertEqual(release['PLATFORM_ID'], 'platform:el8')
        self.assertEqual(helpers.platform_family(release), 'rhel')
        self.assertEqual(helpers.platform_version(release), 8)

        self.assertEqual(helpers.os_release(path + '.missing'), {})

    def test_platform_family(self):
        for release, family in [
                ({'ID': 'ubuntu', 'ID_LIKE': 'debian'}, 'debian'),
                ({'ID': 'debian'}, 'debian'),
                ({'ID': 'linuxmint', 'ID_LIKE': 'ubuntu debian'}, 'debian'),
                ({'ID': 'centos', 'ID_LIKE': 'rhel fedora'}, 'rhel'),
                ({'ID': 'rhel', 'ID_LIKE': 'fedora'}, 'rhel'),
                ({'ID': 'fedora'}, 'fedora'),
                ({'ID': 'almalinux', 'ID_LIKE': 'rhel centos fedora'},
                 'rhel'),
                ({'ID': 'opensuse-leap', 'ID_LIKE': 'suse opensuse'},
                 'suse'),
                ({'ID': 'sles'}, 'suse'),
                ({'ID': 'arch'}, None),
                ({}, None)]:
            with self.subTest(release=release):
                self.assertEqual(helpers.platform_family(release), family)

    def test_platform_version(self):
        self.assertEqual(helpers.platform_version({'VERSION_ID': '22.04'}),
                         22)
        self.assertEqual(helpers.platform_version({'VERSION_ID': '7'}), 7)
        self.assertEqual(helpers.platform_version({}), 0)

    def test_write(self):
        path = os.path.join(self.tmpdir.name, 'a_file')
        helpers.write(path, 'content', mode=0o600, user=None)
        with open(path, 'r') as f:
            self.assertEqual(f.read(), 'content')
        self.assertEqual(os.stat(path).st_mode & 0o777, 0o600)

        helpers.write(path, b'\x00bytes', mode=0o644, user=None)
        with open(path, 'rb') as f:
            self.assertEqual(f.read(), b'\x00bytes')
        self.assertEqual(os.stat(path).st_mode & 0o777, 0o644)

        # No temporary files left behind.
        self.assertEqual(os.listdir(self.tmpdir.name), ['a_file'])

    def test_makedirs(self):
        path = os.path.join(self.tmpdir.name, 'a', 'b')
        helpers.makedirs(path, mode=0o700, user=None)
        self.assertTrue(os.path.isdir(path))
        self.assertEqual(os.stat(path).st_mode & 0o777, 0o700)

        helpers.makedirs(path, mode=0o750, user=None)
        self.assertEqual(os.stat(path).st_mode & 0o777, 0o750)

    def test_empty_directory(self):
        root = self.tmpdir.name
        target = os.path.join(root, 'target')
        data = os.path.join(root, 'data')
        os.makedirs(target)
        os.makedirs(os.path.join(data, 'base', '1'))
        open(os.path.join(data, 'PG_VERSION'), 'w').close()
        open(os.path.join(target, 'keep'), 'w').close()
        os.symlink(target, os.path.join(data, 'pg_wal'))

        helpers.empty_directory(data)

        self.assertTrue(os.path.isdir(data))
        self.assertEqual(os.listdir(data), [])
        # Symlinks are removed, not followed.
        self.assertEqual(os.listdir(target), ['keep'])

    def test_chown_tree_no_user(self):
        # Nothing to do, and no lookup of a missing user.
        helpers.chown_tree(self.tmpdir.name, None, None)

    def test_truthy(self):
        for value in [True, 'on', 'yes', 'True', ' 1 ', 1]:
            self.assertTrue(helpers.truthy(value), value)
        for value in [False, None, '', 'off', 'no', 'false', 0]:
            self.assertFalse(helpers.truthy(value), value)
