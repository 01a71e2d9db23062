#! /usr/bin/env python
#
"""
Run batch system commands and collect their output.
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


import os
import signal
import subprocess

import wfbatch
import wfbatch.exceptions
from wfbatch.utils import same_docstring_as, to_str


class Transport():

    """
    Interface for running external commands on behalf of a batch
    system adapter.

    Concrete classes need only implement `execute_command`:meth:; the
    `run`:meth: and `run4`:meth: variants are built on top of it.
    """

    def __init__(self):
        raise NotImplementedError(
            "Abstract method `Transport()` called - "
            "this should have been defined in a derived class.")

    def execute_command(self, command, timeout=None, env=None):
        """
        Execute a command using the available transport media.

        :param str command: the command line to execute; it is
          interpreted by the ``/bin/sh`` shell.

        :param timeout: maximum time (in seconds) the command is
          allowed to run; ``None`` means wait forever.

        :param dict env: extra environment variables to set in the
          command's environment, on top of the current process
          environment.  A ``None`` value leaves the corresponding
          variable untouched.

        :return: the exit status (int), stdout (str), and stderr (str)
          of the executed command.

        :raise CommandTimeout: if the command did not complete within
          `timeout` seconds.

        :raise TransportError: if the command could not be run at all.
        """
        raise NotImplementedError(
            "Abstract method `Transport.execute_command()` called - "
            "this should have been defined in a derived class.")

    def run(self, command, timeout=None, env=None):
        """
        Execute `command` and return a pair `(output, exitcode)`, where
        `output` is the command's standard output followed by its
        standard error stream.

        Arguments and exceptions are as in `execute_command`:meth:.
        """
        exitcode, stdout, stderr = self.execute_command(command, timeout, env)
        return (stdout + stderr), exitcode

    def run4(self, command, timeout=None, env=None):
        """
        Execute `command` and return a triple `(stdout, stderr, exitcode)`.

        Arguments and exceptions are as in `execute_command`:meth:.
        """
        exitcode, stdout, stderr = self.execute_command(command, timeout, env)
        return stdout, stderr, exitcode


class LocalTransport(Transport):

    """
    Run commands as child processes of the current one.
    """

    def __init__(self, **extra_args):
        if __debug__ and extra_args:
            wfbatch.log.debug(
                "LocalTransport: ignoring extra init arguments: %s",
                ', '.join("{0}={1!r}".format(k, v)
                          for k, v in extra_args.items()))

    @staticmethod
    def _make_environment(env):
        if not env:
            return None
        environ = dict(os.environ)
        for name, value in env.items():
            if value is not None:
                environ[name] = str(value)
        return environ

    @same_docstring_as(Transport.execute_command)
    def execute_command(self, command, timeout=None, env=None):
        try:
            # run in a new session so that on timeout we can kill the
            # whole process group and not just the shell
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._make_environment(env),
                close_fds=True, shell=True,
                start_new_session=True)
        except OSError as ex:
            raise wfbatch.exceptions.TransportError(
                "Failed executing command '%s': %s: %s"
                % (command, ex.__class__.__name__, ex))
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill(process)
            raise wfbatch.exceptions.CommandTimeout(
                "Command '%s' did not complete within %s seconds"
                % (command, timeout))
        exitcode = process.returncode
        wfbatch.log.debug(
            "Executed local command '%s', got exit status: %d",
            command, exitcode)
        # output and error streams are opened in binary mode, so
        # we must convert them into text strings
        return exitcode, to_str(stdout), to_str(stderr)

    @staticmethod
    def _kill(process):
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            # already gone
            pass
        # reap the child and drain its pipes
        process.communicate()
