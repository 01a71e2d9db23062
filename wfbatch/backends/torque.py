#! /usr/bin/env python
#
"""
Job control on PBS/Torque clusters.

The `qsub_command`:func: helper is shared with the Moab/Torque
backend, which submits through Torque's ``qsub`` as well.
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


import datetime
import re
from xml.etree import ElementTree as ET

from wfbatch import log, JobRecord, JobState, TERMINAL_STATES
import wfbatch.defaults
import wfbatch.exceptions
from wfbatch.backends import BatchSystem, ParseResult
from wfbatch.utils import (local_to_utc, same_docstring_as, sh_quote_unsafe,
                           utc_from_epoch)


## submission

_TPP_RE = re.compile(r':tpp=\d+')


def qsub_command(task, qsub='qsub'):
    """
    Return the ``qsub`` command line for submitting `task`.

    The task command's first word is the script submitted; the
    remaining words are passed to it with ``-F``.  Environment
    variables are passed with a single ``-v`` option; variables with
    no value are exported by ``qsub`` from its own environment.
    """
    attrs = task.attributes
    args = [qsub]
    for name, value in attrs.items():
        if name == 'account':
            args += ['-A', value]
        elif name == 'queue':
            args += ['-q', value]
        elif name == 'cores':
            if 'nodes' in attrs:
                continue
            args += ['-l', 'procs=%d' % value]
        elif name == 'nodes':
            # Torque has no notion of threads per process
            args += ['-l', 'nodes=%s' % _TPP_RE.sub('', value)]
        elif name == 'walltime':
            args += ['-l', 'walltime=%s' % value]
        elif name == 'memory':
            args += ['-l', 'vmem=%s' % value]
        elif name == 'stdout':
            args += ['-o', value]
        elif name == 'stderr':
            args += ['-e', value]
        elif name == 'join':
            args += ['-j', 'oe', '-o', value]
        elif name == 'jobname':
            args += ['-N', value]
        elif name == 'native':
            args += list(task.each_native())
    if task.envars:
        envars = []
        for name, value in task.envars.items():
            if value is None:
                envars.append(name)
            else:
                envars.append('%s=%s' % (name, sh_quote_unsafe(value)))
        args += ['-v', ','.join(envars)]
    command = attrs['command'].split()
    if len(command) > 1:
        args += ['-F', sh_quote_unsafe(' '.join(command[1:]))]
    args.append(command[0])
    return ' '.join(args)


_qsub_jobid_re = re.compile(r'^(\d+)(\.\w+)*$')


## status parsing

def bare_jobid(jobid):
    """
    Strip the server name from a Torque job ID::

      >>> bare_jobid('12345.pbs.example.org')
      '12345'
      >>> bare_jobid('12345')
      '12345'
    """
    return jobid.strip().split('.')[0]


_QSTAT_STATE_MAP = {
    'Q': JobState.QUEUED,
    'H': JobState.QUEUED,
    'W': JobState.QUEUED,
    'S': JobState.QUEUED,
    'T': JobState.QUEUED,
    'R': JobState.RUNNING,
    'E': JobState.RUNNING,
}


def _text(elt, path):
    child = elt.find(path)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def parse_qstat_xml_output(stdout, username):
    """
    Parse the output of ``qstat -x`` into a `ParseResult`, keeping only
    the jobs owned by `username`.

    Raise `SchedulerDown` if the output is not a well-formed XML document.
    """
    if not stdout.strip():
        return ParseResult({}, 0)
    try:
        root = ET.fromstring(stdout)
    except ET.ParseError as err:
        raise wfbatch.exceptions.SchedulerDown(
            "Cannot parse `qstat -x` output: %s" % err)
    records = {}
    skipped = 0
    for job in root.iter('Job'):
        try:
            owner = (_text(job, 'Job_Owner') or '').split('@')[0]
            if owner != username:
                continue
            jobid = bare_jobid(_text(job, 'Job_Id'))
            native_state = _text(job, 'job_state')
            if native_state == 'C':
                exit_status = _text(job, 'exit_status')
                if exit_status is None:
                    exit_status = wfbatch.defaults.UNKNOWN_EXIT_STATUS
                exit_status = int(exit_status)
                state = (JobState.SUCCEEDED if exit_status == 0
                         else JobState.FAILED)
            else:
                exit_status = None
                state = _QSTAT_STATE_MAP.get(native_state, JobState.UNKNOWN)
            cores = (_text(job, 'Resource_List/procs')
                     or _text(job, 'Resource_List/ncpus'))
            priority = _text(job, 'Priority')
            records[jobid] = JobRecord(
                jobid=jobid,
                user=owner,
                state=state,
                native_state=native_state,
                queue=_text(job, 'queue'),
                jobname=_text(job, 'Job_Name'),
                cores=(int(cores) if cores else None),
                submit_time=utc_from_epoch(_text(job, 'qtime')),
                start_time=utc_from_epoch(_text(job, 'start_time')),
                end_time=utc_from_epoch(_text(job, 'comp_time')),
                priority=(int(priority) if priority else None),
                exit_status=exit_status,
            )
        except (AttributeError, ValueError) as err:
            log.debug("Ignoring unparseable `qstat` job entry: %s", err)
            skipped += 1
    return ParseResult(records, skipped)


_tracejob_queued_re = re.compile(
    r'(?P<submission_time>\d+/\d+/\d+\s+\d+:\d+:\d+)\s+.\s+'
    r'Job Queued at request of .*job name =\s*(?P<job_name>[^,]+),'
    r'\s+queue =\s*(?P<queue>[^,\s]+)')

_tracejob_run_re = re.compile(
    r'(?P<running_time>\d+/\d+/\d+\s+\d+:\d+:\d+)\s+.\s+'
    r'Job Run at request of .*')

_tracejob_last_re = re.compile(
    r'(?P<end_time>\d+/\d+/\d+\s+\d+:\d+:\d+)\s+.'
    r'\s+Exit_status=(?P<exit_status>-?\d+)')

_tracejob_deleted_re = re.compile(
    r'(?P<end_time>\d+/\d+/\d+\s+\d+:\d+:\d+)\s+.\s+'
    r'Job deleted at request of ')


def _parse_asctime(val):
    return local_to_utc(
        datetime.datetime.strptime(val.strip(), '%m/%d/%Y %H:%M:%S'))


def parse_tracejob_output(stdout, jobid):
    """
    Parse the output of ``tracejob`` for job `jobid` and return a
    `JobRecord`, or ``None`` if the output holds no events for the job.
    """
    record = {}
    for line in stdout.split('\n'):
        match = _tracejob_queued_re.match(line)
        if match:
            record['submit_time'] = _parse_asctime(
                match.group('submission_time'))
            record['jobname'] = match.group('job_name').strip()
            record['queue'] = match.group('queue')
            record.setdefault('state', JobState.QUEUED)
            record.setdefault('native_state', 'Q')
            continue
        match = _tracejob_run_re.match(line)
        if match:
            record['start_time'] = _parse_asctime(match.group('running_time'))
            if record.get('state') not in TERMINAL_STATES:
                record['state'] = JobState.RUNNING
                record['native_state'] = 'R'
            continue
        match = _tracejob_last_re.match(line)
        if match:
            record['end_time'] = _parse_asctime(match.group('end_time'))
            record['exit_status'] = int(match.group('exit_status'))
            record['state'] = (JobState.SUCCEEDED
                               if record['exit_status'] == 0
                               else JobState.FAILED)
            record['native_state'] = 'C'
            continue
        match = _tracejob_deleted_re.match(line)
        if match and 'exit_status' not in record:
            record['end_time'] = _parse_asctime(match.group('end_time'))
            record['exit_status'] = wfbatch.defaults.UNKNOWN_EXIT_STATUS
            record['state'] = JobState.FAILED
            record['native_state'] = 'C'
    if 'state' not in record:
        return None
    record['jobid'] = jobid
    return JobRecord(record)


class TorqueBatchSystem(BatchSystem):

    """
    Job control on PBS/Torque clusters.

    Jobs are looked up in the output of ``qstat -x``; Torque keeps
    finished jobs there for a while (``keep_completed``), so there is
    no separate accounting query.  Jobs not found there are looked up
    in the server logs with ``tracejob``.
    """

    _acct_lookback_levels = ()

    def __init__(self, name=None,
                 tracejob_days=wfbatch.defaults.TRACEJOB_DAYS,
                 **extra_args):
        BatchSystem.__init__(self, name, **extra_args)
        self.tracejob_days = int(tracejob_days)
        self._qsub = self._get_command('qsub')
        self._qstat = self._get_command('qstat')
        self._qdel = self._get_command('qdel')
        self._tracejob = self._get_command('tracejob')
        # records of finished jobs found by `tracejob`
        self._traced = {}

    @same_docstring_as(BatchSystem.submit)
    def submit(self, task):
        return self._submit_command(
            qsub_command(task, self._qsub), _qsub_jobid_re)

    def _delete_command(self, jobid):
        return ('%s %s' % (self._qdel, jobid))

    def _refresh_jobqueue(self):
        command = ('%s -x' % self._qstat)
        stdout, stderr, exitcode = self._run_query(command, self.queue_timeout)
        self._check_exitcode(command, exitcode, stderr)
        return parse_qstat_xml_output(stdout, self._username)

    def _fallback_status(self, jobid):
        if jobid in self._traced:
            return self._traced[jobid]
        command = ('%s -n %d %s' % (self._tracejob, self.tracejob_days, jobid))
        stdout, stderr, exitcode = self._run_query(command, self.acct_timeout)
        if exitcode != 0:
            # `tracejob` complains about unreadable log files even when
            # it succeeds, so its errors are not a sign of Torque failure
            log.debug("Command '%s' exited with status %d: %s",
                      command, exitcode, stderr.strip())
            return None
        try:
            record = parse_tracejob_output(stdout, jobid)
        except ValueError as err:
            log.debug("Cannot parse `tracejob` output for job %s: %s",
                      jobid, err)
            return None
        if record is not None and record.state in TERMINAL_STATES:
            self._traced[jobid] = record
        return record


# main: run tests

if "__main__" == __name__:
    import doctest
    doctest.testmod(name="torque",
                    optionflags=doctest.NORMALIZE_WHITESPACE)
