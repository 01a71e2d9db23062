#! /usr/bin/env python
#
"""
`wfbatch` is the batch-system layer of a workflow engine.

It translates a scheduler-agnostic task description into the
submission syntax of a specific HPC batch system (LSF, Moab/Torque,
Torque, SLURM), runs the submission command, and normalizes the
heterogeneous status and accounting output of each scheduler into a
single job record model.

The main entry points are the adapter classes in
`wfbatch.backends`:mod: and the `TaskSpec`:class: and
`JobRecord`:class: classes defined here.
"""
# Copyright (C) 2009-2019  University of Zurich. All rights reserved.
#
# This program is free software; you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation; either version 2 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.
#
__docformat__ = 'reStructuredText'

__version__ = '1.0.0'


import os
import os.path
import platform
import sys
from types import MappingProxyType

import logging
import logging.config
log = logging.getLogger("wfbatch")
log.propagate = True

import coloredlogs

import wfbatch.defaults
import wfbatch.exceptions
from wfbatch.utils import Enum, Struct


def configure_logger(
        level=logging.ERROR,
        name=None,
        format=(os.path.basename(sys.argv[0])
                + ': [%(asctime)s] %(levelname)-8s: %(message)s'),
        datefmt='%Y-%m-%d %H:%M:%S',
        colorize='auto'):
    """
    Configure the ``wfbatch`` logger.

    Arguments `level`, `format` and `datefmt` set the corresponding
    arguments in the `logging.basicConfig()` call.

    Argument `colorize` controls the use of the `coloredlogs`_ module to
    color-code log output lines.  The default value ``auto`` enables log
    colorization iff the `sys.stderr` stream is connected to a terminal;
    a ``True`` value will enable it regardless of the log output stream
    terminal status, and any ``False`` value will disable log
    colorization altogether.

    .. _coloredlogs: https://coloredlogs.readthedocs.org/en/latest/#

    A user configuration file named ``NAME.log.conf`` or
    ``wfbatch.log.conf`` is searched for in the directory pointed to by
    environment variable ``WFBATCH_CONF``, and then in ``~/.wfbatch``;
    if found, it is read and used for more advanced configuration.
    """
    # ensure basic logger configuration is there, and load more
    # complex config from file if it exists
    logging.basicConfig(level=level, format=format, datefmt=datefmt)
    _load_logging_configuration_file(name)
    log = logging.getLogger(name)
    log.setLevel(level)
    log.propagate = True
    # try to colorize logs going to the console
    if colorize == 'auto':
        # set if STDERR is connected to a terminal
        colorize = sys.stderr.isatty()
    if colorize:
        for name in set(["wfbatch", name]):
            coloredlogs.install(
                logger=logging.getLogger(name),
                reconfigure=True,
                stream=sys.stderr,
                level=level,
                fmt=format,
                datefmt=datefmt,
                programname=name)
    return log


def _load_logging_configuration_file(name=None):
    if name is None:
        name = os.path.basename(sys.argv[0])
    # determine where to look for conf files
    log_conf_dirs = [wfbatch.defaults.RCDIR]
    wfbatch_conf_path = os.environ.get('WFBATCH_CONF', '')
    if os.path.exists(wfbatch_conf_path):
        if not os.path.isdir(wfbatch_conf_path):
            wfbatch_conf_path = os.path.dirname(wfbatch_conf_path)
        log_conf_dirs.insert(0, wfbatch_conf_path)
    # use first logging configuration found
    for log_conf_file in [name + '.log.conf', 'wfbatch.log.conf']:
        for log_conf_dir in log_conf_dirs:
            log_conf = os.path.join(log_conf_dir, log_conf_file)
            if os.path.exists(log_conf):
                logging.config.fileConfig(log_conf, {
                    'RCDIR': wfbatch.defaults.RCDIR,
                    'HOMEDIR': os.path.expandvars('$HOME'),
                    'HOSTNAME': platform.node(),
                }, disable_existing_loggers=False)
                return log_conf
    return None


JobState = Enum(
    'QUEUED',       # waiting in the scheduler queue
    'RUNNING',      # executing (or completing) on compute nodes
    'SUCCEEDED',    # terminated with exit status 0
    'FAILED',       # terminated with non-zero exit status, or killed
    'UNKNOWN',      # no information about the job could be found
    'UNAVAILABLE',  # the scheduler could not be queried
)
"""
Canonical job states, common to all batch systems.
"""

TERMINAL_STATES = frozenset([JobState.SUCCEEDED, JobState.FAILED])
"""
Job states that carry an exit status.
"""


class JobRecord(Struct):

    """
    Status information about a single batch job.

    Every record has the following keys (any of them may be ``None``
    when the batch system does not report the corresponding datum):

    ``jobid``
      Batch system job ID, as a string.
    ``user``
      Owner of the job.
    ``state``
      One of the `JobState`:data: labels.
    ``native_state``
      The scheduler's own state string, preserved verbatim.
    ``queue``, ``jobname``, ``cores``, ``priority``
      As reported by the scheduler.
    ``submit_time``, ``start_time``, ``end_time``
      Timezone-aware UTC `datetime` objects.
    ``exit_status``
      Integer exit status; only set on SUCCEEDED and FAILED records.

    Batch systems may add further keys (e.g., Moab passes through
    attributes that have no canonical counterpart).

    The constructor enforces consistency between ``state``,
    ``exit_status`` and the time stamps::

      >>> r = JobRecord(jobid='42', state=JobState.FAILED)
      >>> r.exit_status
      255
      >>> r = JobRecord(jobid='42', state=JobState.RUNNING, exit_status=0)
      >>> r.exit_status is None
      True
    """

    FIELDS = ('jobid', 'user', 'state', 'native_state', 'queue',
              'jobname', 'cores', 'submit_time', 'start_time', 'end_time',
              'priority', 'exit_status')

    TIMESTAMPS = ('submit_time', 'start_time', 'end_time')

    def __init__(self, initializer=None, **extra_args):
        for name in self.FIELDS:
            self[name] = None
        Struct.__init__(self, initializer, **extra_args)
        if self.state not in JobState:
            raise wfbatch.exceptions.InvalidValue(
                "Invalid job state '%s' for job '%s'"
                % (self.state, self.jobid))
        if self.state in TERMINAL_STATES:
            if self.exit_status is None:
                self.exit_status = wfbatch.defaults.UNKNOWN_EXIT_STATUS
        else:
            self.exit_status = None
        if self.state in (JobState.UNKNOWN, JobState.UNAVAILABLE):
            for name in self.TIMESTAMPS:
                self[name] = None

    @classmethod
    def unknown(cls, jobid):
        """Return the record of a job no information source knows about."""
        return cls(jobid=jobid, state=JobState.UNKNOWN, native_state='Unknown')

    @classmethod
    def unavailable(cls, jobid):
        """Return the record of a job whose scheduler cannot be queried."""
        return cls(jobid=jobid, state=JobState.UNAVAILABLE,
                   native_state='Unavailable')

    def __repr__(self):
        return ("JobRecord(jobid=%r, state=%r, native_state=%r)"
                % (self.jobid, self.state, self.native_state))


class TaskSpec():

    """
    Immutable, scheduler-agnostic description of a job to submit.

    Argument `attributes` is a mapping (or a sequence of pairs) of
    resource attributes; the order of keys is preserved and determines
    the order of options in the generated submission command.
    Recognized attribute names are listed in `ATTRIBUTES`; the
    ``command`` attribute is mandatory.

    Argument `envars` maps environment variable names to their values;
    a value of ``None`` means the variable is passed through from the
    submitting environment unchanged.

    Example::

      >>> t = TaskSpec([('queue', 'batch'), ('cores', '4'),
      ...               ('command', '/bin/true')])
      >>> t.attributes['cores']
      4
      >>> list(t.attributes)
      ['queue', 'cores', 'command']
      >>> t.attributes['queue'] = 'debug'
      Traceback (most recent call last):
        ...
      TypeError: 'mappingproxy' object does not support item assignment
    """

    ATTRIBUTES = ('account', 'queue', 'partition', 'cores', 'nodes',
                  'walltime', 'memory', 'stdout', 'stderr', 'join',
                  'jobname', 'native', 'command')

    def __init__(self, attributes, envars=None):
        attrs = dict(attributes)
        for name in attrs:
            if name not in self.ATTRIBUTES:
                raise wfbatch.exceptions.InvalidArgument(
                    "Unknown task attribute '%s'" % name)
        if 'command' not in attrs or not attrs['command']:
            raise wfbatch.exceptions.InvalidArgument(
                "Task specification has no `command` attribute")
        if 'cores' in attrs and attrs['cores'] is None:
            del attrs['cores']
        elif 'cores' in attrs:
            try:
                attrs['cores'] = int(attrs['cores'])
            except ValueError:
                raise wfbatch.exceptions.InvalidValue(
                    "Task attribute `cores` must be an integer, got '%s'"
                    % attrs['cores'])
        if 'native' in attrs:
            native = attrs['native']
            if native is None:
                native = ()
            elif isinstance(native, str):
                native = (native,)
            attrs['native'] = tuple(native)
        self._attributes = MappingProxyType(attrs)
        self._envars = MappingProxyType(dict(envars or {}))

    @property
    def attributes(self):
        return self._attributes

    @property
    def envars(self):
        return self._envars

    def each_native(self):
        """Iterate over the raw scheduler options, in order."""
        return iter(self._attributes.get('native', ()))

    def __repr__(self):
        return ("TaskSpec(%r, envars=%r)"
                % (dict(self._attributes), dict(self._envars)))
