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

from reactive.pgserver import postgresql


# Attributes that must be supplied by the operator when there is no
# durable node state to persist generated values in. Maps the attribute
# name to the configuration option providing it.
SOLO_REQUIRED = {
    'password.postgres': 'postgres_password',
}


class ConfigurationError(Exception):
    '''Configuration is missing or invalid. Fatal.

    missing lists the names of the required attributes that were not
    set, if any.
    '''
    def __init__(self, message, missing=()):
        super().__init__(message)
        self.missing = list(missing)


def missing_solo_attributes(config):
    return sorted(attr for attr, option in SOLO_REQUIRED.items()
                  if not config.get(option))


def check_solo_attributes(config):
    """Raise ConfigurationError listing every missing required attribute."""
    missing = missing_solo_attributes(config)
    if missing:
        options = sorted(SOLO_REQUIRED[attr] for attr in missing)
        raise ConfigurationError(
            'You must set {} in solo mode. There is no node state to '
            'persist generated values; set the {} option.'
            ''.format(', '.join(missing), ', '.join(options)),
            missing)


def validate_config(config):
    '''Sanity check configuration, returning a list of problems.

    An empty list means the configuration is usable.
    '''
    problems = []

    standby_mode = str(config.get('standby_mode') or 'off').lower()
    if standby_mode not in ('on', 'off'):
        problems.append('Invalid value for standby_mode ({!r})'
                        ''.format(config.get('standby_mode')))
    elif standby_mode == 'on' and not config.get('master_ip'):
        problems.append('master_ip is required when standby_mode is on')

    ver = (config.get('version') or '').strip()
    if ver:
        try:
            postgresql.parse_version(ver)
        except ValueError:
            problems.append('Invalid value for version ({!r})'.format(ver))

    for key in ('port', 'master_port', 'basebackup_timeout',
                'basebackup_retries', 'service_timeout'):
        value = config.get(key)
        if value is None:
            continue
        try:
            valid = int(value) > 0
        except (TypeError, ValueError):
            valid = False
        if not valid:
            problems.append('Invalid value for {} ({!r})'.format(key, value))

    return problems
