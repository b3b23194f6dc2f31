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

'''
Installation of the PostgreSQL server, one variant per OS family.

The variant is chosen once with get_installer(). Each provides the same
capabilities: prepare() the host, install_packages(), configure()
packaging specific files, and initialize_data_directory().
'''
import grp
import os.path
import pwd
import subprocess

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from charmhelpers.core import hookenv
from charmhelpers.core.hookenv import DEBUG

from reactive.pgserver import helpers
from reactive.pgserver import postgresql


TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)),
                             'templates')


def render(template, variables, templates_dir=TEMPLATES_DIR):
    env = Environment(loader=FileSystemLoader(templates_dir),
                      undefined=StrictUndefined,
                      keep_trailing_newline=True)
    return env.get_template(template).render(variables)


def apt_install(packages):
    # charmhelpers.fetch refuses to import on non-Debian platforms.
    from charmhelpers import fetch
    fetch.apt_install(sorted(packages), fatal=True)


class ServerInstaller(object):
    owner = 'postgres'
    group = 'postgres'

    def __init__(self, config, store=None, release=None):
        self.config = config
        self.store = store
        self.release = helpers.os_release() if release is None else release
        self.family = helpers.platform_family(self.release)
        self.platform = self.release.get('ID', '').lower()
        self.platform_version = helpers.platform_version(self.release)
        self._version = None

    @property
    def version(self):
        if self._version is None:
            self._version = postgresql.version(self.config, self.store,
                                               self.release)
        return self._version

    @property
    def port(self):
        return int(self.config.get('port') or 5432)

    def data_dir(self):
        return self.config.get('data_directory') or self.default_data_dir()

    def default_data_dir(self):
        raise NotImplementedError()

    def config_dir(self):
        return self.data_dir()

    def service_name(self):
        raise NotImplementedError()

    def packages(self):
        override = (self.config.get('server_packages') or '').split()
        return set(override) if override else self.default_packages()

    def default_packages(self):
        raise NotImplementedError()

    def install_packages(self):
        raise NotImplementedError()

    def prepare(self):
        '''Prepare the host before packages are installed.'''

    def configure(self):
        '''Write packaging specific files. Returns True if any changed.'''
        return False

    def initdb_command(self):
        return None

    def initialize_data_directory(self):
        '''Create the cluster, unless PG_VERSION already exists.

        Returns True if a cluster was created.
        '''
        data_dir = self.data_dir()
        if postgresql.is_initialized(data_dir):
            hookenv.log('{} already initialized'.format(data_dir), DEBUG)
            return False
        cmd = self.initdb_command()
        if cmd is None:
            hookenv.log('{} is initialized on first start'.format(data_dir))
            return False
        hookenv.log('Initializing {} with {}'.format(data_dir, ' '.join(cmd)))
        subprocess.check_call(cmd, universal_newlines=True)
        return True

    def render_config(self, template, target, variables,
                      owner=None, group=None, perms=0o644):
        '''Render a template to target. Returns True if target changed.

        Ownership of a new file is left as created if owner is None.
        '''
        content = render(template, variables)
        if os.path.exists(target):
            with open(target, 'r') as f:
                if f.read() == content:
                    return False
        helpers.write(target, content, mode=perms, user=owner, group=group)
        hookenv.log('Rendered {} from {}'.format(target, template))
        return True


class DebianInstaller(ServerInstaller):
    '''Debian and Ubuntu, using the postgresql-common cluster tools.'''

    def default_data_dir(self):
        return '/var/lib/postgresql/{}/main'.format(self.version)

    def config_dir(self):
        return '/etc/postgresql/{}/main'.format(self.version)

    def service_name(self):
        if helpers.is_systemd():
            return 'postgresql@{}-main'.format(self.version)
        return 'postgresql'

    def createcluster_conf_path(self):
        return '/etc/postgresql-common/createcluster.d/pgserver.conf'

    def default_packages(self):
        ver = self.version
        p = set(['postgresql-{}'.format(ver),
                 'postgresql-common',
                 'postgresql-client-common',
                 'postgresql-client-{}'.format(ver)])
        if not postgresql.has_version(ver, '10'):
            p.add('postgresql-contrib-{}'.format(ver))
        return p

    def prepare(self):
        '''Stop the packages from creating the default cluster.

        The default cluster would be created with the wrong locale and
        port. initialize_data_directory() creates it instead.
        '''
        path = self.createcluster_conf_path()
        if os.path.exists(path):
            return
        os.makedirs(os.path.dirname(path), mode=0o755, exist_ok=True)
        helpers.write(path, 'create_main_cluster = false\n', mode=0o444,
                      user=None)

    def install_packages(self):
        packages = self.packages()
        hookenv.log('Installing {}'.format(','.join(sorted(packages))))
        apt_install(packages)

    def initdb_command(self):
        cmd = ['pg_createcluster',
               '-e', self.config.get('encoding') or 'UTF-8',
               '--locale', self.config.get('initdb_locale') or 'C',
               '-p', str(self.port)]
        if self.config.get('data_directory'):
            cmd.extend(['-d', self.config['data_directory']])
        cmd.extend([self.version, 'main'])
        if postgresql.has_version(self.version, '9.3'):
            cmd.extend(['--', '--data-checksums'])
        return cmd


class RedHatInstaller(ServerInstaller):
    '''RHEL, CentOS and Fedora.

    An explicitly configured version selects the PGDG packaging, which
    installs under /usr/pgsql-X. Otherwise the distribution's own
    packages are used.
    '''
    uid = 26
    gid = 26

    @property
    def pgdg(self):
        return bool((self.config.get('version') or '').strip())

    def pgdg_name(self):
        '''Version as it appears in PGDG package names.'''
        if postgresql.has_version(self.version, '10'):
            return self.version
        return postgresql.version_digits(self.version)

    def default_data_dir(self):
        if self.pgdg:
            return '/var/lib/pgsql/{}/data'.format(self.version)
        return '/var/lib/pgsql/data'

    def service_name(self):
        if self.pgdg:
            return 'postgresql-{}'.format(self.version)
        return 'postgresql'

    def default_packages(self):
        if self.pgdg:
            name = self.pgdg_name()
            return set(['postgresql{}'.format(name),
                        'postgresql{}-server'.format(name)])
        return set(['postgresql', 'postgresql-server'])

    def package_command(self):
        if self.family == 'fedora' or self.platform_version >= 8:
            return ['dnf', '-y', 'install']
        return ['yum', '-y', 'install']

    def install_packages(self):
        packages = sorted(self.packages())
        hookenv.log('Installing {}'.format(','.join(packages)))
        subprocess.check_call(self.package_command() + packages,
                              universal_newlines=True)

    def ensure_system_user(self):
        '''Create the postgres group and user like the packages would.

        Creating them first pins the uid and gid, and lets files be
        rendered before the packages are installed.
        '''
        try:
            grp.getgrnam(self.group)
        except KeyError:
            hookenv.log('Creating group {}'.format(self.group))
            subprocess.check_call(['groupadd', '--system',
                                   '--gid', str(self.gid), self.group],
                                  universal_newlines=True)
        try:
            pwd.getpwnam(self.owner)
        except KeyError:
            hookenv.log('Creating user {}'.format(self.owner))
            subprocess.check_call(['useradd', '--system',
                                   '--uid', str(self.uid),
                                   '--gid', self.group,
                                   '--home-dir', '/var/lib/pgsql',
                                   '--no-create-home',
                                   '--shell', '/bin/bash',
                                   '--comment', 'PostgreSQL Server',
                                   self.owner],
                                  universal_newlines=True)

    def prepare(self):
        self.ensure_system_user()
        helpers.makedirs(self.config_dir(), mode=0o700,
                         user=self.owner, group=self.group)

    def uses_sysconfig(self):
        # Starting with Fedora 16, the pgsql sysconfig files are no longer
        # used and the systemd unit does not support initdb.
        return not (self.family == 'fedora' and self.platform_version >= 16)

    def sysconfig_path(self):
        return '/etc/sysconfig/pgsql/{}'.format(self.service_name())

    def configure(self):
        if not self.uses_sysconfig():
            return False
        path = self.sysconfig_path()
        os.makedirs(os.path.dirname(path), mode=0o755, exist_ok=True)
        return self.render_config('pgsql.sysconfig.tmpl', path,
                                  dict(data_dir=self.data_dir(),
                                       port=self.port,
                                       initdb_locale=self.initdb_locale()))

    def initdb_locale(self):
        return self.config.get('initdb_locale') or 'C'

    def setup_script(self):
        if postgresql.has_version(self.version, '10'):
            name = 'postgresql-{}-setup'.format(self.version)
        else:
            name = 'postgresql{}-setup'.format(self.pgdg_name())
        if self.platform in ('rhel', 'redhat'):
            return name  # Linked into /usr/bin
        return '/usr/pgsql-{}/bin/{}'.format(self.version, name)

    def initdb_command(self):
        svc = self.service_name()
        if self.family == 'fedora' and self.platform_version >= 24:
            return ['postgresql-setup', '--initdb', '--unit', svc]
        if self.family == 'fedora' and self.platform_version >= 16:
            return ['postgresql-setup', 'initdb', svc]
        if self.platform_version >= 7:
            if self.pgdg:
                return [self.setup_script(), 'initdb', svc]
            if self.platform_version >= 8:
                return ['postgresql-setup', '--initdb', '--unit', svc]
            return ['postgresql-setup', 'initdb', svc]
        return ['/sbin/service', svc, 'initdb', self.initdb_locale()]


class SuseInstaller(RedHatInstaller):
    '''SLES and openSUSE. The cluster is created on first start.'''

    @property
    def pgdg(self):
        return False

    def default_packages(self):
        name = postgresql.version_digits(self.version)
        return set(['postgresql{}'.format(name),
                    'postgresql{}-server'.format(name)])

    def package_command(self):
        return ['zypper', '--non-interactive', 'install']

    def initdb_command(self):
        return None


INSTALLERS = {
    'debian': DebianInstaller,
    'rhel': RedHatInstaller,
    'fedora': RedHatInstaller,
    'suse': SuseInstaller,
}


def get_installer(config, store=None, release=None):
    if release is None:
        release = helpers.os_release()
    family = helpers.platform_family(release)
    try:
        cls = INSTALLERS[family]
    except KeyError:
        raise NotImplementedError('Unsupported platform {} {}'.format(
            release.get('ID', 'unknown'), release.get('VERSION_ID', '')))
    hookenv.log('Using {} for {} {}'.format(cls.__name__,
                                            release.get('ID'),
                                            release.get('VERSION_ID')),
                DEBUG)
    return cls(config, store, release)
