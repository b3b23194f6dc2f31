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
charms.reactive handlers converging the local PostgreSQL server.

States:

    pgserver.packages.installed

        Server packages are installed and the host prepared.

    pgserver.cluster.initialized

        The data directory has been created (PG_VERSION exists).

    pgserver.service.started

        The service has been enabled and started.

    pgserver.needs_restart

        Something the server only reads at startup has changed.
'''
import subprocess

from charmhelpers.core import hookenv, unitdata
from charmhelpers.core.hookenv import CRITICAL, ERROR
from charms import reactive
from charms.reactive import when, when_not

from reactive.workloadstatus import blocked, status_set
from reactive.pgserver import credentials
from reactive.pgserver import helpers
from reactive.pgserver import installer
from reactive.pgserver import postgresql
from reactive.pgserver import preflight
from reactive.pgserver import replication
from reactive.pgserver import service


_installer = None


def is_solo():
    return helpers.truthy(hookenv.config().get('solo'))


def node_store():
    '''The durable node state store, or None in solo mode.'''
    if is_solo():
        return None
    return unitdata.kv()


def get_installer():
    '''The installer for this platform, chosen once per run.'''
    global _installer
    if _installer is None:
        _installer = installer.get_installer(hookenv.config(), node_store())
    return _installer


def get_service():
    timeout = int(hookenv.config().get('service_timeout') or 300)
    return service.ServiceController(get_installer().service_name(),
                                     timeout=timeout)


def configuration_error(x):
    hookenv.log(str(x), CRITICAL)
    blocked(str(x), exit_code=1)


def validate_config():
    problems = preflight.validate_config(hookenv.config())
    for problem in problems:
        hookenv.log(problem, ERROR)
    if problems:
        blocked('; '.join(problems))


def provision_credential():
    provisioner = credentials.SecretProvisioner(node_store(), solo=is_solo())
    try:
        return provisioner.ensure_administrative_credential(hookenv.config())
    except preflight.ConfigurationError as x:
        configuration_error(x)


# Abort before the main reactive loop on bad configuration. Nothing
# gets installed on a node that cannot get a credential.
hookenv.atstart(validate_config)
hookenv.atstart(provision_credential)


@when_not('pgserver.packages.installed')
def install():
    inst = get_installer()
    status_set('maintenance', 'Installing PostgreSQL {}'.format(inst.version))
    inst.prepare()
    try:
        inst.install_packages()
    except subprocess.CalledProcessError:
        blocked('Unable to install packages {}'
                ''.format(','.join(sorted(inst.packages()))))
    reactive.set_state('pgserver.packages.installed')


@when('pgserver.packages.installed')
@when_not('pgserver.cluster.initialized')
def initialize_cluster():
    inst = get_installer()
    status_set('maintenance', 'Initializing {}'.format(inst.data_dir()))
    try:
        inst.initialize_data_directory()
    except subprocess.CalledProcessError as x:
        blocked('Failed to initialize {}: {}'.format(inst.data_dir(), x))
    reactive.set_state('pgserver.cluster.initialized')


@when('pgserver.cluster.initialized')
def configure():
    config = hookenv.config()
    inst = get_installer()
    changed = inst.configure()
    changed = postgresql.ensure_ssl_links(inst.data_dir(), inst.version,
                                          config.get('ssl_cert_file'),
                                          config.get('ssl_key_file')) or changed
    if changed and reactive.is_state('pgserver.service.started'):
        hookenv.log('Configuration changed. PostgreSQL needs restart.')
        reactive.set_state('pgserver.needs_restart')


@when('pgserver.cluster.initialized')
@when_not('pgserver.service.started')
def start():
    svc = get_service()
    status_set('maintenance', 'Starting {}'.format(svc.name))
    try:
        svc.enable()
        svc.start()
    except service.ServiceError as x:
        blocked('PostgreSQL failed to start: {}'.format(x))
    reactive.set_state('pgserver.service.started')
    reactive.remove_state('pgserver.needs_restart')


@when('pgserver.service.started')
@when('pgserver.needs_restart')
def restart():
    svc = get_service()
    status_set('maintenance', 'Restarting {}'.format(svc.name))
    try:
        svc.restart()
    except service.ServiceError as x:
        blocked('PostgreSQL failed to restart: {}'.format(x))
    reactive.remove_state('pgserver.needs_restart')


@when('pgserver.service.started')
@when_not('pgserver.needs_restart')
def converge_replication():
    config = hookenv.config()
    credential = provision_credential()
    bootstrapper = replication.ReplicationBootstrapper(
        config, node_store(), get_installer(), get_service())
    try:
        role = bootstrapper.role
    except preflight.ConfigurationError as x:
        configuration_error(x)

    try:
        if role is replication.Role.STANDBY and not bootstrapper.is_synced():
            status_set('maintenance', 'Cloning {}'.format(config['master_ip']))
        bootstrapper.converge(credential)
    except preflight.ConfigurationError as x:
        configuration_error(x)
    except replication.BaseBackupError as x:
        blocked('Failed to clone {}: {}'.format(config.get('master_ip'), x))
    except service.ServiceError as x:
        blocked(str(x))

    if role is replication.Role.STANDBY:
        if credentials.replication_credential(config) is None:
            status_set('blocked', 'recovery_user and recovery_user_pass '
                                  'are required in standby_mode')
        else:
            status_set('active', 'Live standby of {}'
                                 ''.format(config['master_ip']))
    else:
        status_set('active', 'Live primary')
