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

from enum import Enum
import functools
import os
import os.path
import shutil
import socket
import subprocess
import tarfile
import tempfile
import time

from tenacity import (Retrying, retry_if_exception_type,
                      stop_after_attempt, wait_exponential)

from charmhelpers.core import hookenv
from charmhelpers.core.hookenv import DEBUG, WARNING

from reactive.pgserver import credentials
from reactive.pgserver import helpers
from reactive.pgserver import postgresql
from reactive.pgserver import preflight


# Sentinel in the data directory. The destructive clone is only ever
# done if it is missing.
SYNCED_MARKER = 'standby_synced'

# Set in the node state store while the data directory is being replaced.
RESYNC_KEY = 'pgserver.replication.resync_started'

ARCHIVE_NAME = 'pg_basebackup.tar'


class Role(Enum):
    PRIMARY = 'primary'
    STANDBY = 'standby'


def node_role(config):
    mode = config.get('standby_mode') or 'off'
    if isinstance(mode, bool):
        mode = 'on' if mode else 'off'
    mode = str(mode).strip().lower()
    if mode == 'on':
        return Role.STANDBY
    if mode == 'off':
        return Role.PRIMARY
    raise preflight.ConfigurationError(
        'Invalid value for standby_mode ({!r})'.format(mode))


def conninfo_quote(value):
    '''Quote a value for a libpq connection string.'''
    value = str(value).replace('\\', '\\\\').replace("'", "\\'")
    return "'{}'".format(value)


def primary_conninfo(host, port, credential, application_name):
    settings = [('host', host),
                ('port', port),
                ('user', credential.username),
                ('password', credential.password),
                ('application_name', application_name)]
    return ' '.join('{}={}'.format(k, conninfo_quote(v))
                    for k, v in settings)


class BaseBackupError(helpers.RetryableError):
    '''Fetching a base backup from the primary failed.'''


def has_extraction_filters():
    # Added in 3.9.17, 3.10.12 and 3.11.4.
    return hasattr(tarfile, 'tar_filter')


def config_quote(value):
    '''Quote a value for postgresql.conf or recovery.conf.'''
    value = str(value).replace('\\', '\\\\').replace("'", "''")
    return "'{}'".format(value)


def verify_archive(path):
    '''Raise BaseBackupError unless path holds a complete base backup.

    pg_basebackup sends global/pg_control last, so its presence along
    with every member's data being present means the stream completed.
    '''
    size = os.path.getsize(path)
    try:
        with tarfile.open(path) as tar:
            members = tar.getmembers()
    except (tarfile.TarError, EOFError) as x:
        raise BaseBackupError('Invalid base backup archive {}: {}'
                              ''.format(path, x))
    for member in members:
        if member.offset_data + member.size > size:
            raise BaseBackupError('Truncated base backup archive {} ({})'
                                  ''.format(path, member.name))
    names = set(os.path.normpath(m.name) for m in members)
    if 'global/pg_control' not in names:
        raise BaseBackupError('Incomplete base backup archive {}: '
                              'missing global/pg_control'.format(path))


class BaseBackupFetcher(object):
    '''Stream a base backup from a primary into a tar archive.

    The password is passed to pg_basebackup in its environment, never
    on the command line.
    '''
    def __init__(self, version, timeout=3600, pg_basebackup='pg_basebackup'):
        self.version = version
        self.timeout = timeout
        self.pg_basebackup = pg_basebackup

    def command(self, host, port, username):
        cmd = [self.pg_basebackup,
               '--no-password', '--write-recovery-conf',
               '--host', host, '--port', str(port),
               '--username', username,
               '--pgdata', '-', '--format', 'tar',
               '--checkpoint', 'fast', '--progress']
        # WAL cannot be streamed when the tar is written to stdout.
        if postgresql.has_version(self.version, '10'):
            cmd.extend(['--wal-method', 'fetch'])
        else:
            cmd.extend(['--xlog-method', 'fetch'])
        return cmd

    def fetch(self, host, port, credential, archive_path):
        '''Write a verified base backup to archive_path.

        Nothing is left at archive_path unless the whole backup was
        received. Raises BaseBackupError on failure.
        '''
        partial = archive_path + '.partial'
        cmd = self.command(host, port, credential.username)
        env = dict(os.environ, PGPASSWORD=credential.password)
        hookenv.log('Cloning {}:{} with {}'.format(host, port, ' '.join(cmd)))
        # A leftover partial may be a planted symlink. Remove the link
        # itself, and never open through one.
        if os.path.lexists(partial):
            os.unlink(partial)
        try:
            fd = os.open(partial, os.O_WRONLY | os.O_CREAT | os.O_EXCL |
                         os.O_NOFOLLOW, 0o600)
            with os.fdopen(fd, 'wb') as f:
                subprocess.run(cmd, stdout=f, stderr=subprocess.PIPE,
                               env=env, timeout=self.timeout, check=True)
            verify_archive(partial)
            os.replace(partial, archive_path)
        except subprocess.TimeoutExpired:
            raise BaseBackupError('pg_basebackup from {} timed out after {}s'
                                  ''.format(host, self.timeout))
        except subprocess.CalledProcessError as x:
            stderr = (x.stderr or b'').decode('UTF-8', 'replace').strip()
            raise BaseBackupError('pg_basebackup from {} failed ({}): {}'
                                  ''.format(host, x.returncode, stderr))
        finally:
            if os.path.lexists(partial):
                os.unlink(partial)


class ReplicationBootstrapper(object):
    '''Converge the replication role of the local server.

    A standby is cloned from its primary exactly once, recorded by the
    SYNCED_MARKER file in its data directory. A primary gets its
    administrative password and replication role maintained.

    Collaborators are injected: the node state store (may be None in
    solo mode), a ServerInstaller for paths and templates, a
    ServiceController, a BaseBackupFetcher and a callable returning a
    local administrative database connection.
    '''
    backoff = 2  # Seconds, doubled each retry.

    def __init__(self, config, store, installer, service,
                 fetcher=None, connect=None, archive_dir=None):
        self.config = config
        self.store = store
        self.installer = installer
        self.service = service
        if fetcher is None:
            timeout = int(config.get('basebackup_timeout') or 3600)
            fetcher = BaseBackupFetcher(installer.version, timeout=timeout)
        self.fetcher = fetcher
        if connect is None:
            connect = functools.partial(postgresql.connect,
                                        port=installer.port)
        self.connect = connect
        # None clones through a private directory beside the data directory.
        self.archive_dir = archive_dir
        self.attempts = int(config.get('basebackup_retries') or 3)

    @property
    def role(self):
        return node_role(self.config)

    def data_dir(self):
        # The data directory may be a symlink to the real storage. It is
        # the target that gets emptied, so the link remains in place.
        return os.path.realpath(self.installer.data_dir())

    def marker_path(self):
        return os.path.join(self.data_dir(), SYNCED_MARKER)

    def is_synced(self):
        return os.path.exists(self.marker_path())

    def converge(self, credential):
        if self.role is Role.STANDBY:
            self.bootstrap_standby()
        else:
            self.ensure_replication_user()
            self.assign_postgres_password(credential)

    def bootstrap_standby(self):
        '''Clone the primary, unless already done.

        Returns True if a base backup was applied.
        '''
        repl = credentials.replication_credential(self.config)
        if repl is None:
            hookenv.log('standby_mode is on, but recovery_user and '
                        'recovery_user_pass are not both set. '
                        'Standby left unconfigured.', WARNING)
            return False

        if self.is_synced():
            hookenv.log('{} exists, base backup already applied'
                        ''.format(self.marker_path()), DEBUG)
            return False

        if not self.config.get('master_ip'):
            raise preflight.ConfigurationError(
                'master_ip is required when standby_mode is on',
                ['master_ip'])

        if not has_extraction_filters():
            raise NotImplementedError(
                'Cloning requires tarfile extraction filters, available from '
                'Python 3.9.17, 3.10.12 and 3.11.4')

        started = self.store.get(RESYNC_KEY) if self.store else None
        if started:
            hookenv.log('Clone started {} did not complete. Contents of {} '
                        'are incomplete and will be replaced.'
                        ''.format(started, self.data_dir()), WARNING)

        # PostgreSQL must not be running while its data is replaced.
        if self.service.is_running():
            hookenv.log('Stopping PostgreSQL to clone {}'
                        ''.format(self.config['master_ip']))
            self.service.stop()

        workdir = self.archive_dir or self.make_workdir()
        try:
            archive = self.fetch_base_backup(repl, workdir)
            self.apply_base_backup(archive, repl)
        finally:
            if self.archive_dir is None:
                shutil.rmtree(workdir)

        # recovery settings came with the base backup, so the server
        # comes up as a hot standby.
        self.service.restart()
        return True

    def make_workdir(self):
        '''Create a private directory to hold the archive.

        It is made on the same filesystem as the data directory, which
        has room for a copy of the cluster where /tmp may not.
        '''
        parent = os.path.dirname(self.data_dir())
        os.makedirs(parent, mode=0o755, exist_ok=True)
        return tempfile.mkdtemp(prefix='.pgserver-clone-', dir=parent)

    def fetch_base_backup(self, repl, workdir):
        host = self.config['master_ip']
        port = int(self.config.get('master_port') or 5432)
        archive = os.path.join(workdir, ARCHIVE_NAME)
        retrying = Retrying(stop=stop_after_attempt(self.attempts),
                            wait=wait_exponential(multiplier=self.backoff,
                                                  max=300),
                            retry=retry_if_exception_type(BaseBackupError),
                            before_sleep=self._log_retry,
                            reraise=True)
        for attempt in retrying:
            with attempt:
                self.fetcher.fetch(host, port, repl, archive)
        return archive

    def _log_retry(self, retry_state):
        hookenv.log('Base backup attempt {} of {} failed: {}'
                    ''.format(retry_state.attempt_number, self.attempts,
                              retry_state.outcome.exception()), WARNING)

    def apply_base_backup(self, archive, repl):
        '''Replace the data directory with the contents of archive.

        Only called with a verified archive. The marker is written last,
        so an interruption leaves the node unmarked and it is cloned again.
        '''
        data_dir = self.data_dir()
        owner, group = self.installer.owner, self.installer.group

        self._set_resync_started()
        if os.path.isdir(data_dir):
            hookenv.log('Removing contents of {} in preparation for clone'
                        ''.format(data_dir))
            helpers.empty_directory(data_dir)
        else:
            helpers.makedirs(data_dir, mode=0o700, user=owner, group=group)

        hookenv.log('Extracting {} into {}'.format(archive, data_dir))
        with tarfile.open(archive) as tar:
            tar.extractall(data_dir, filter='tar')
        helpers.chown_tree(data_dir, owner, group)
        os.chmod(data_dir, 0o700)

        if not postgresql.has_version(self.installer.version, '12'):
            self.write_recovery_conf(repl)

        helpers.write(self.marker_path(), '', mode=0o600,
                      user=owner, group=group)
        self._clear_resync_started()
        os.unlink(archive)
        hookenv.log('Clone of {} complete'.format(self.config['master_ip']))

    def write_recovery_conf(self, repl):
        '''Replace the recovery.conf generated by pg_basebackup.'''
        conninfo = primary_conninfo(self.config['master_ip'],
                                    int(self.config.get('master_port') or
                                        5432),
                                    repl, socket.gethostname())
        path = postgresql.recovery_conf_path(self.data_dir())
        return self.installer.render_config(
            'recovery.conf.tmpl', path,
            dict(primary_conninfo=config_quote(conninfo)),
            owner=self.installer.owner, group=self.installer.group,
            perms=0o600)

    def _set_resync_started(self):
        if self.store is not None:
            self.store.set(RESYNC_KEY,
                           time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime()))
            self.store.flush()

    def _clear_resync_started(self):
        if self.store is not None:
            self.store.unset(RESYNC_KEY)
            self.store.flush()

    def ensure_replication_user(self):
        '''Create or update the replication role on a primary.

        Returns True if the role was created or updated.
        '''
        if self.role is not Role.PRIMARY:
            return False
        repl = credentials.replication_credential(self.config)
        if repl is None:
            return False
        if postgresql.is_secondary(self.data_dir()):
            hookenv.log('Hot standby. Not creating replication user.', DEBUG)
            return False
        hookenv.log('Ensuring replication user {}'.format(repl.username))
        con = self.connect()
        try:
            postgresql.ensure_user(con, repl.username, repl.password,
                                   replication=True)
            con.commit()
        finally:
            con.close()
        return True

    def assign_postgres_password(self, credential):
        '''Set the superuser password on a primary.

        There is no way of telling if the password is already set, so
        it is set every time. Requires passwordless local access for the
        postgres user, such as a 'local all postgres peer' pg_hba.conf rule.
        Returns True if the password was set.
        '''
        if postgresql.is_secondary(self.data_dir()):
            hookenv.log('Hot standby. Not assigning {} password.'
                        ''.format(credential.username), DEBUG)
            return False
        if not helpers.truthy(self.config.get('assign_postgres_password',
                                              True)):
            hookenv.log('assign_postgres_password is disabled', DEBUG)
            return False
        con = self.connect()
        try:
            postgresql.set_password(con, credential.username,
                                    credential.password)
            con.commit()
        finally:
            con.close()
        hookenv.log('Assigned {} password'.format(credential.username))
        return True
