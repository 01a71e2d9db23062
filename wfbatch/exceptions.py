#! /usr/bin/env python

"""Exceptions specific to the `wfbatch` package.

In addition to the exceptions listed here, `wfbatch`:mod: functions
try to use Python builtin exceptions with the same meaning they have
in core Python, namely:

* `TypeError` is raised when an argument to a function or method has an
  incompatible type or does not implement the required protocol.

* `ValueError` is raised when an argument to a function or method has
  the correct type, but fails to satisfy other constraints in the
  function contract.

* `AssertionError` is raised when some internal assumption regarding
  state or function/method calling contract is violated.  Informally,
  this indicates a bug in the software.

Note that querying a batch system never raises: a scheduler that
cannot be reached is reported through a job record in state
``UNAVAILABLE``, see `wfbatch.backends.BatchSystem.status`:meth:.
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

__docformat__ = 'reStructuredText'


import wfbatch


## base error classes

class Error(Exception):

    """
    Base class for all error-level exceptions in `wfbatch`.

    Generally, this indicates a non-fatal error: depending on the
    nature of the task, steps could be taken to continue, but users
    *must* be aware that an error condition occurred, so the message
    is sent to the logs at the ERROR level when `do_log` is true.

    Exceptions indicating an error condition after which the program
    cannot continue and should immediately stop, should use the
    `FatalError`:class: base class.
    """

    def __init__(self, msg, do_log=False):
        if do_log:
            wfbatch.log.error(msg)
        Exception.__init__(self, msg)


# mark errors as "Recoverable" (meaning that a retry a ta later time
# could succeed), or "Unrecoverable" (meaning there's no point in
# retrying).

class RecoverableError(Error):

    """
    Used to mark transient errors: retrying the same action at a later
    time could succeed.

    This exception should *never* be instanciated: it is only to be used
    in `except` clauses to catch "try again" situations.
    """
    pass


class UnrecoverableError(Error):

    """
    Used to mark permanent errors: there's no point in retrying the same
    action at a later time, because it will yield the same error again.

    This exception should *never* be instanciated: it is only to be used
    in `except` clauses to exclude "try again" situations.
    """
    pass


class FatalError(UnrecoverableError):

    """
    A fatal error: execution cannot continue and program should report
    to user and then stop.

    The message is sent to the logs at CRITICAL level
    when the exception is first constructed.
    """

    def __init__(self, msg, do_log=True):
        if do_log:
            wfbatch.log.critical(msg)
        Exception.__init__(self, msg)


## derived exceptions

class ConfigurationError(FatalError):
    pass


class ConfigurationFileError(FatalError):

    """
    Base class for errors related to loading configuration files.
    """
    pass


class NoConfigurationFile(ConfigurationFileError):

    """
    Raised when the configuration file cannot be read (e.g., does not
    exist or has wrong permissions), or cannot be parsed (e.g., is
    malformed).
    """
    pass


class NoAccessibleConfigurationFile(NoConfigurationFile):

    """
    Raised when the configuration file cannot be read (e.g., does not
    exist or has wrong permissions).
    """
    pass


class NoValidConfigurationFile(NoConfigurationFile):
    """
    Raised when the configuration file cannot be parsed (e.g., is
    malformed).
    """
    pass


class UnknownBatchSystem(ConfigurationError, ValueError):

    """
    Raised when a configuration names a batch system type for which
    no adapter class is known.
    """
    pass


class InvalidArgument(Error, AssertionError):

    """
    Raised when the arguments passed to a function do not honor some
    required contract.  For instance, a task specification is missing
    the mandatory ``command`` attribute.
    """
    pass


class InvalidValue(InvalidArgument, ValueError):

    """
    A specialization of`InvalidArgument` for cases when the value of
    the passed argument does not match expectations.
    """
    pass


class BatchSystemError(Error):
    pass


class SchedulerDown(BatchSystemError, RecoverableError):

    """
    A batch system query command failed, timed out, or returned output
    that cannot be parsed into a job table.

    Raised by the cache refresh methods of the batch system adapters;
    it never escapes `BatchSystem.status`:meth:, which catches it and
    marks the scheduler as unavailable.
    """
    pass


class TransportError(Error, EnvironmentError):
    pass


class CommandTimeout(TransportError, RecoverableError):

    """
    Raised when an external command does not complete within the
    allotted time.  The command's process group has been killed by the
    time this exception is seen.
    """
    pass


# main: run tests

if "__main__" == __name__:
    import doctest
    doctest.testmod(name="exceptions",
                    optionflags=doctest.NORMALIZE_WHITESPACE)
