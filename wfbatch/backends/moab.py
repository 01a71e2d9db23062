#! /usr/bin/env python
#
"""
Job control on clusters running the Moab scheduler on top of Torque.
"""
# Copyright (C) 2009-2016, 2019  University of Zurich. All rights reserved.
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


from xml.etree import ElementTree as ET

from wfbatch import log, JobRecord, JobState
import wfbatch.defaults
import wfbatch.exceptions
from wfbatch.backends import BatchSystem, ParseResult
from wfbatch.backends.torque import (TorqueBatchSystem, qsub_command,
                                     _qsub_jobid_re)
from wfbatch.utils import same_docstring_as, utc_from_epoch


# Example of `showq --xml` output used to build this backend:
#
# <Data><Object>queue</Object><cluster LocalActiveNodes="8" .../>
#  <queue count="1" option="active">
#   <job AWDuration="12" Class="batch" DRMJID="123.moab" JobID="123"
#        JobName="demo" ReqProcs="4" StartPriority="1" StartTime="1330000100"
#        State="Running" SubmissionTime="1330000000" User="jdoe"></job>
#  </queue>
#  <queue count="0" option="eligible"></queue>
#  <queue count="0" option="blocked"></queue>
# </Data>


def _showq_state(native_state):
    if native_state in ('Idle', 'Deferred') or native_state.endswith('Hold'):
        return JobState.QUEUED
    elif native_state == 'Running':
        return JobState.RUNNING
    else:
        return JobState.UNKNOWN


def _int_or_none(val):
    if val is None or val == '':
        return None
    return int(val)


# map `showq` attribute name to `JobRecord` field and conversion function
_SHOWQ_ATTRS = {
    'JobID':          ('jobid',       str),
    'State':          ('native_state', str),
    'JobName':        ('jobname',     str),
    'User':           ('user',        str),
    'ReqProcs':       ('cores',       _int_or_none),
    'Class':          ('queue',       str),
    'SubmissionTime': ('submit_time', utc_from_epoch),
    'StartTime':      ('start_time',  utc_from_epoch),
    'StartPriority':  ('priority',    _int_or_none),
}

# additional attributes in `showq -c` output
_SHOWQ_COMPLETED_ATTRS = dict(_SHOWQ_ATTRS)
_SHOWQ_COMPLETED_ATTRS.update({
    'CompletionTime': ('end_time',    utc_from_epoch),
    'AWDuration':     ('duration',    _int_or_none),
})


def _parse_showq_xml(stdout):
    if not stdout.strip():
        return []
    try:
        root = ET.fromstring(stdout)
    except ET.ParseError as err:
        raise wfbatch.exceptions.SchedulerDown(
            "Cannot parse `showq` output: %s" % err)
    return root.iter('job')


def _showq_record(job, attrs):
    record = {}
    for name, value in job.attrib.items():
        if name in attrs:
            field, conv = attrs[name]
            record[field] = conv(value)
        else:
            # keep anything else under its native name
            record[name] = value
    if not record.get('jobid'):
        raise ValueError("No `JobID` attribute")
    return record


def parse_showq_output(stdout):
    """
    Parse the output of ``showq --xml`` (live queue) into a `ParseResult`.

    Raise `SchedulerDown` if the output is not a well-formed XML document.
    """
    records = {}
    skipped = 0
    for job in _parse_showq_xml(stdout):
        try:
            record = _showq_record(job, _SHOWQ_ATTRS)
            record['state'] = _showq_state(record.get('native_state', ''))
            records[record['jobid']] = JobRecord(record)
        except ValueError as err:
            log.debug("Ignoring unparseable `showq` job entry: %s", err)
            skipped += 1
    return ParseResult(records, skipped)


def parse_showq_completed_output(stdout):
    """
    Parse the output of ``showq -c --xml`` (completed jobs) into a
    `ParseResult`.

    Jobs that were removed or cancelled get exit status 255; otherwise
    the exit status is the job's ``CompletionCode``, or 0 if it has
    none.  If a job occurs more than once, the first occurrence wins.
    """
    records = {}
    skipped = 0
    for job in _parse_showq_xml(stdout):
        try:
            record = _showq_record(job, _SHOWQ_COMPLETED_ATTRS)
            code = job.get('CompletionCode', '')
            if (record.get('native_state', '').startswith('Removed')
                    or code.startswith('CNCLD')):
                exit_status = wfbatch.defaults.UNKNOWN_EXIT_STATUS
            else:
                # no `CompletionCode` means a clean exit
                exit_status = int(code or 0)
            record['exit_status'] = exit_status
            record['state'] = (JobState.SUCCEEDED if exit_status == 0
                               else JobState.FAILED)
            record = JobRecord(record)
        except ValueError as err:
            log.debug("Ignoring unparseable `showq -c` job entry: %s", err)
            skipped += 1
            continue
        if record.jobid not in records:
            records[record.jobid] = record
    return ParseResult(records, skipped)


class MoabTorqueBatchSystem(BatchSystem):

    """
    Job control on clusters running Moab on top of Torque.

    Jobs are submitted with Torque's ``qsub`` and looked up with Moab's
    ``showq``.  Since Moab learns about job state changes from Torque
    with some delay, jobs that Moab does not know about are looked up
    through a `TorqueBatchSystem`:class: instance.

    ``showq -c`` always returns all the completed-job records Moab
    retains, so there is a single accounting lookback level.
    """

    _acct_lookback_levels = (1,)

    def __init__(self, name=None, **extra_args):
        BatchSystem.__init__(self, name, **extra_args)
        self._qsub = self._get_command('qsub')
        self._qdel = self._get_command('qdel')
        self._showq = self._get_command('showq')
        # Torque is only used as a fallback source of job status
        torque_args = dict(extra_args)
        torque_args.update(
            name=('%s/torque' % self.name),
            transport=self.transport,
            username=self._username)
        self._torque = TorqueBatchSystem(**torque_args)

    @same_docstring_as(BatchSystem.submit)
    def submit(self, task):
        return self._submit_command(
            qsub_command(task, self._qsub), _qsub_jobid_re)

    def _delete_command(self, jobid):
        return ('%s %s' % (self._qdel, jobid))

    def _run_showq(self, command):
        stdout, stderr, exitcode = self._run_query(command, self.queue_timeout)
        self._check_exitcode(command, exitcode, stderr)
        return stdout

    def _refresh_jobqueue(self):
        command = ('%s --noblock --xml -u %s' % (self._showq, self._username))
        return parse_showq_output(self._run_showq(command))

    def _refresh_jobacct(self, depth):
        command = ('%s -c --noblock --xml -u %s'
                   % (self._showq, self._username))
        return parse_showq_completed_output(self._run_showq(command))

    def _fallback_status(self, jobid):
        record = self._torque.status(jobid)
        if record.state == JobState.UNKNOWN:
            return None
        return record


# main: run tests

if "__main__" == __name__:
    import doctest
    doctest.testmod(name="moab",
                    optionflags=doctest.NORMALIZE_WHITESPACE)
