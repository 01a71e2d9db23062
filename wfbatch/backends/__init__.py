#! /usr/bin/env python
#
"""
Interface to batch systems.

Each supported batch system is handled by a subclass of
`BatchSystem`:class:, which provides the four operations a workflow
engine needs: `submit`, `status`, `statuses` and `delete`.
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


from collections import namedtuple

import wfbatch
import wfbatch.defaults
import wfbatch.exceptions
from wfbatch import JobRecord
from wfbatch.backends.transport import LocalTransport, Transport
from wfbatch.utils import Struct, current_username, string_to_boolean


ParseResult = namedtuple('ParseResult', ['records', 'skipped'])
"""
Outcome of parsing a batch system listing: `records` maps job IDs to
`JobRecord`:class: objects, `skipped` counts the lines or elements
that could not be turned into a record.
"""


class BatchSystem(Struct):

    """
    Base class for interfacing with a batch system.

    Job status is looked up in three places, in this order:

    1. the *live queue*, i.e., the list of jobs currently known to the
       scheduler, which is loaded once on first use;
    2. the *accounting* records of finished jobs; these are loaded at
       the shallowest lookback depth first, and at increasingly deeper
       levels (listed in the class attribute `_acct_lookback_levels`)
       each time a job is not found; each level is loaded at most once
       and the depth never decreases;
    3. an optional batch system specific fallback source (see
       `_fallback_status`:meth:).

    If any query to the batch system fails, the batch system is marked
    as unavailable for the rest of the lifetime of this object, and all
    further status requests are answered with an ``UNAVAILABLE`` job
    record without running any command.

    Any keyword argument passed to the constructor becomes an instance
    attribute; in particular, a keyword argument named after one of
    the batch system commands (e.g., ``bsub='/opt/lsf/bin/bsub'``)
    overrides the command line used to invoke it.
    """

    _acct_lookback_levels = ()
    """Ordered lookback depths for accounting queries."""

    def __init__(self, name=None, transport='local', username=None,
                 queue_timeout=wfbatch.defaults.QUEUE_TIMEOUT,
                 acct_timeout=wfbatch.defaults.ACCT_TIMEOUT,
                 submit_timeout=wfbatch.defaults.SUBMIT_TIMEOUT,
                 delete_timeout=wfbatch.defaults.DELETE_TIMEOUT,
                 enabled=True,
                 # additional arguments can set instance attributes
                 **extra_args):
        Struct.__init__(self, **extra_args)
        self.name = str(name or self.__class__.__name__)
        if transport == 'local':
            self.transport = LocalTransport()
        elif isinstance(transport, Transport):
            self.transport = transport
        else:
            raise wfbatch.exceptions.TransportError(
                "Unknown transport '%s'" % transport)
        self._username = username or current_username()
        self.queue_timeout = int(queue_timeout)
        self.acct_timeout = int(acct_timeout)
        self.submit_timeout = int(submit_timeout)
        self.delete_timeout = int(delete_timeout)
        self.enabled = string_to_boolean(enabled)

        # availability guard; once down, stays down
        self._schedup = True
        # job caches; `None` means "not yet loaded"
        self._jobqueue = None
        self._jobacct = None
        # number of accounting lookback levels already loaded
        self._acct_depth = 0

    @property
    def available(self):
        """`True` until a query to the batch system has failed."""
        return self._schedup

    @property
    def acct_depth(self):
        """
        Deepest accounting lookback level loaded so far,
        or ``None`` if accounting records have not been loaded yet.
        """
        if self._acct_depth == 0:
            return None
        return self._acct_lookback_levels[self._acct_depth - 1]

    def _get_command(self, name, default=None):
        """
        Return an command-line (string) for invoking command `name`.

        The command name is looked up in this batch system's
        configuration parameters, and, if found, the associated string
        is returned::

          | >>> b = LsfBatchSystem(bsub='/usr/local/bin/bsub -R lustre')
          | >>> b._get_command('bsub')
          | '/usr/local/bin/bsub -R lustre'

        Otherwise, if no configuration parameter by name `name` is
        found, then second argument `default` is returned, or the
        value of `name` itself if `default` is ``None``::

          | >>> b._get_command('bkill')
          | 'bkill'

        """
        if default is None:
            default = name
        return self.get(name, default)

    ## submission and cancellation

    def submit(self, task):
        """
        Submit the job described by `TaskSpec`:class: `task`.

        Return a pair `(jobid, output)`: `jobid` is the batch system
        job ID as a string, or ``None`` if the output of the
        submission command could not be recognized as a successful
        submission; `output` is the raw text printed by the submission
        command (or a description of the error that prevented running
        it), for diagnostic purposes.
        """
        raise NotImplementedError(
            "Abstract method `BatchSystem.submit()` called"
            " - this should have been defined in a derived class.")

    def _submit_command(self, command, jobid_re, env=None):
        """
        Run submission command `command` and look for regular
        expression `jobid_re` in its output; the first group in the
        regexp must capture the job ID.

        Return a pair `(jobid, output)` as `submit`:meth: does.
        """
        wfbatch.log.debug("Submitting job with command: %s", command)
        try:
            output, exitcode = self.transport.run(
                command, self.submit_timeout, env)
        except wfbatch.exceptions.TransportError as err:
            wfbatch.log.warning(
                "%s: submission command '%s' failed: %s",
                self.name, command, err)
            return None, str(err)
        for line in output.split('\n'):
            match = jobid_re.search(line)
            if match:
                jobid = match.group(1)
                wfbatch.log.info(
                    "%s: submitted job %s", self.name, jobid)
                return jobid, output
        wfbatch.log.warning(
            "%s: could not extract job ID from output of '%s'"
            " (exit status %d): %s",
            self.name, command, exitcode, output.rstrip())
        return None, output

    def delete(self, jobid):
        """
        Ask the batch system to cancel job `jobid`.

        Cancellation is fire-and-forget: the outcome of the cancel
        command is logged, but neither checked nor reported.
        """
        command = self._delete_command(str(jobid))
        try:
            output, exitcode = self.transport.run(
                command, self.delete_timeout)
        except wfbatch.exceptions.TransportError as err:
            wfbatch.log.warning(
                "%s: could not cancel job %s: %s", self.name, jobid, err)
            return
        if exitcode != 0:
            wfbatch.log.warning(
                "%s: command '%s' exited with status %d: %s",
                self.name, command, exitcode, output.strip())
        else:
            wfbatch.log.debug("%s: cancelled job %s", self.name, jobid)

    def _delete_command(self, jobid):
        raise NotImplementedError(
            "Abstract method `BatchSystem._delete_command()` called"
            " - this should have been defined in a derived class.")

    ## status

    def status(self, jobid):
        """
        Return a `JobRecord`:class: with the current status of job `jobid`.

        This method never raises on batch system errors: if the batch
        system cannot be queried, a record in state ``UNAVAILABLE`` is
        returned; if no information about the job can be found, a
        record in state ``UNKNOWN`` is returned.
        """
        jobid = str(jobid)
        if not self._schedup:
            return JobRecord.unavailable(jobid)
        try:
            return self._lookup(jobid)
        except (wfbatch.exceptions.SchedulerDown,
                wfbatch.exceptions.TransportError) as err:
            self._scheduler_down(err)
            return JobRecord.unavailable(jobid)

    def statuses(self, jobids):
        """
        Return a dictionary mapping each of `jobids` to its
        `JobRecord`:class:, as `status`:meth: would.

        Jobs are looked up one after the other; caches loaded for one
        job are reused for the following ones.
        """
        result = {}
        for jobid in jobids:
            result[str(jobid)] = self.status(jobid)
        return result

    def _scheduler_down(self, err):
        self._schedup = False
        wfbatch.log.warning(
            "%s: batch system is unavailable, will not query it again: %s",
            self.name, err)

    def _lookup(self, jobid):
        # live queue
        if self._jobqueue is None:
            self._jobqueue = self._load(self._refresh_jobqueue(), 'queue')
        if jobid in self._jobqueue:
            return self._jobqueue[jobid]

        # accounting, with increasing lookback
        if self._jobacct is not None and jobid in self._jobacct:
            return self._jobacct[jobid]
        while self._acct_depth < len(self._acct_lookback_levels):
            depth = self._acct_lookback_levels[self._acct_depth]
            self._jobacct = self._load(
                self._refresh_jobacct(depth), 'accounting')
            self._acct_depth += 1
            if jobid in self._jobacct:
                return self._jobacct[jobid]

        record = self._fallback_status(jobid)
        if record is not None:
            return record

        return JobRecord.unknown(jobid)

    def _load(self, result, what):
        if result.skipped:
            wfbatch.log.info(
                "%s: skipped %d unparseable %s record(s)",
                self.name, result.skipped, what)
        wfbatch.log.debug(
            "%s: loaded %d %s record(s)", self.name, len(result.records), what)
        return result.records

    def _refresh_jobqueue(self):
        """
        Query the batch system for the jobs currently in its queue.

        Return a `ParseResult`:class: object; raise `SchedulerDown` if
        the query fails.
        """
        raise NotImplementedError(
            "Abstract method `BatchSystem._refresh_jobqueue()` called"
            " - this should have been defined in a derived class.")

    def _refresh_jobacct(self, depth):
        """
        Query the batch system accounting for finished jobs, looking
        back `depth` units (batch system specific: days, log files...).

        Return a `ParseResult`:class: object; raise `SchedulerDown` if
        the query fails.
        """
        raise NotImplementedError(
            "Abstract method `BatchSystem._refresh_jobacct()` called"
            " - this should have been defined in a derived class.")

    def _fallback_status(self, jobid):
        """
        Return a `JobRecord` for `jobid` from an alternate source of
        information, or ``None`` if there is no such source or it has
        no record of the job.

        The default implementation always returns ``None``.
        """
        return None

    def _run_query(self, command, timeout, env=None):
        """
        Run status query `command` and return the triple
        `(stdout, stderr, exitcode)`.

        Failure to run the command (including a timeout) is reported
        as `SchedulerDown`; checking the exit status and output is
        left to the caller.
        """
        try:
            return self.transport.run4(command, timeout, env)
        except wfbatch.exceptions.TransportError as err:
            raise wfbatch.exceptions.SchedulerDown(
                "Running '%s' failed: %s" % (command, err))

    @staticmethod
    def _check_exitcode(command, exitcode, stderr):
        if exitcode != 0:
            raise wfbatch.exceptions.SchedulerDown(
                "Command '%s' exited with status %d: %s"
                % (command, exitcode, stderr.strip()))
