#! /usr/bin/env python

"""
Job control on LSF clusters.
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

__docformat__ = 'reStructuredText'


import datetime
import re

from wfbatch import log, JobRecord, JobState
import wfbatch.defaults
from wfbatch.backends import BatchSystem, ParseResult
from wfbatch.quantity import (memory_to_megabytes, parse_duration,
                              parse_nodespec, seconds_to_hhmm)
from wfbatch.utils import infer_year, local_to_utc, same_docstring_as


# Examples of LSF commands output used to build this backend:
#
# $ bsub -q pub.1h -W 00:10 -n 1 -R rusage[mem=1800] ./script.sh
# Job <473713> is submitted to queue <pub.1h>.
#
# $ bjobs -w
# JOBID   USER    STAT  QUEUE      FROM_HOST   EXEC_HOST   JOB_NAME   SUBMIT_TIME
# 473713  gloessa RUN   pub.1h     brutus2     a6128       TM-T       Oct 19 17:10
# 473714  gloessa PEND  pub.1h     brutus2                 TM-U       Oct 19 17:11
#
# $ bhist -n 1 -l -d -w
# Job <850088>, Job Name <demo>, User <smaffiol>, Project <default>, Command <./script.sh>
# Wed Jul 11 14:11:10: Submitted from host <globus>, to Queue <normal>, CWD <$HOME>,
#                      Output File <stdout.log>;
# Wed Jul 11 14:11:47: Dispatched to <cpt157>;
# Wed Jul 11 14:11:48: Exited with exit code 127. The CPU time used is 0.1 seconds.
# ------------------------------------------------------------------------------
# Job <850089>, ...


## parsers

def _parse_timespec(ts, now=None):
    """
    Parse a timestamp as it appears in LSF ``bjobs``/``bhist`` output
    and return it as a UTC `datetime`.

    Timestamps carrying a year are parsed as-is; otherwise the year is
    inferred with `wfbatch.utils.infer_year`:func:.
    """
    ts = ' '.join(ts.split())
    for fmt in _TIMESTAMP_FMTS_WITH_YEAR:
        try:
            return local_to_utc(datetime.datetime.strptime(ts, fmt))
        except ValueError:
            pass  # ignore and try next format
    for fmt in _TIMESTAMP_FMTS:
        try:
            return local_to_utc(infer_year(ts, fmt, now))
        except ValueError:
            pass
    raise ValueError("Cannot parse LSF timestamp '%s'" % ts)

_TIMESTAMP_FMTS_WITH_YEAR = [
    '%a %b %d %H:%M:%S %Y',
    '%b %d %H:%M:%S %Y',
    '%b %d %H:%M %Y',
]

_TIMESTAMP_FMTS = [
    '%a %b %d %H:%M:%S',
    '%b %d %H:%M:%S',
    '%b %d %H:%M',
]


_BJOBS_STATE_MAP = {
    'PEND': JobState.QUEUED,
    'RUN': JobState.RUNNING,
}


def parse_bjobs_output(stdout, now=None):
    """
    Parse the output of ``bjobs -w`` into a `ParseResult`.

    The job name is taken as the column right before the last three
    ones (which hold the submission time), since the ``EXEC_HOST``
    column is empty for pending jobs.  Lines with a single field are
    continuations of a long ``EXEC_HOST`` list and are ignored.
    """
    records = {}
    skipped = 0
    for line in stdout.split('\n'):
        if not line.strip() or line.startswith('JOBID'):
            continue
        fields = line.split()
        if len(fields) == 1:
            continue
        try:
            jobid, user, stat, queue = fields[:4]
            if len(fields) < 8:
                raise ValueError("Too few fields")
            submit_time = _parse_timespec(' '.join(fields[-3:]), now)
        except ValueError as err:
            log.debug("Ignoring unparseable `bjobs` line '%s': %s", line, err)
            skipped += 1
            continue
        records[jobid] = JobRecord(
            jobid=jobid,
            user=user,
            native_state=stat,
            state=_BJOBS_STATE_MAP.get(stat, JobState.UNKNOWN),
            queue=queue,
            jobname=fields[-4],
            submit_time=submit_time,
        )
    return ParseResult(records, skipped)


_TS = r'(?P<ts>\w+\s+\w+\s+\d+\s+\d+:\d+:\d+(\s+\d\d\d\d)?):\s+'

_BHIST_JOB_RE = re.compile(
    r'^Job <(?P<jobid>\d+)>,( Job Name <(?P<jobname>[^>]*)>,)* User <(?P<user>[^>]+)>,')
_BHIST_SUBMIT_RE = re.compile(
    _TS + r'Submitted from host <[^>]+>, to Queue <(?P<queue>[^>]+)>,')
_BHIST_DISPATCH_RE = re.compile(_TS + r'Dispatched to ')
_BHIST_DONE_RE = re.compile(_TS + r'Done successfully\.')
_BHIST_EXIT_RE = re.compile(
    _TS + r'Exited (with exit code|by signal) (?P<exit_status>\d+)')
_BHIST_FORCED_EXIT_RE = re.compile(
    _TS + r'Exited; job has been forced to exit with exit code (?P<exit_status>\d+)')
_BHIST_EXITED_RE = re.compile(_TS + r'Exited\.')

_BHIST_BLOCK_SEP_RE = re.compile(r'^-{10,}\n', re.M)
_BHIST_CONTINUATION_RE = re.compile(r'\n\s{3,}')


def _parse_bhist_block(block, now=None):
    """
    Return a `JobRecord` built from the event lines of one ``bhist -l``
    job block, or ``None`` if the block does not describe a finished job.
    """
    # join continuation lines, so that each event is on a line of its own
    text = _BHIST_CONTINUATION_RE.sub('', block.strip())
    record = {}
    for event in text.split('\n'):
        event = event.strip()
        if not event:
            continue
        match = _BHIST_JOB_RE.match(event)
        if match:
            record['jobid'] = match.group('jobid')
            record['jobname'] = match.group('jobname')
            record['user'] = match.group('user')
            continue
        match = _BHIST_SUBMIT_RE.search(event)
        if match:
            record['submit_time'] = _parse_timespec(match.group('ts'), now)
            record['queue'] = match.group('queue')
            continue
        match = _BHIST_DISPATCH_RE.search(event)
        if match:
            record['start_time'] = _parse_timespec(match.group('ts'), now)
            continue
        match = _BHIST_DONE_RE.search(event)
        if match:
            record['end_time'] = _parse_timespec(match.group('ts'), now)
            record['exit_status'] = 0
            record['state'] = JobState.SUCCEEDED
            record['native_state'] = 'DONE'
            continue
        for regexp in _BHIST_EXIT_RE, _BHIST_FORCED_EXIT_RE:
            match = regexp.search(event)
            if match:
                record['end_time'] = _parse_timespec(match.group('ts'), now)
                record['exit_status'] = int(match.group('exit_status'))
                record['state'] = JobState.FAILED
                record['native_state'] = 'EXIT'
                break
        else:
            match = _BHIST_EXITED_RE.search(event)
            if match:
                record['end_time'] = _parse_timespec(match.group('ts'), now)
                record['exit_status'] = wfbatch.defaults.UNKNOWN_EXIT_STATUS
                record['state'] = JobState.FAILED
                record['native_state'] = 'EXIT'
    if 'jobid' not in record or 'state' not in record:
        return None
    return JobRecord(record)


def parse_bhist_output(stdout, now=None):
    """
    Parse the output of ``bhist -l -d -w`` into a `ParseResult`.

    If a job ID occurs in more than one block, the first block wins.
    """
    records = {}
    skipped = 0
    for block in _BHIST_BLOCK_SEP_RE.split(stdout):
        if not block.strip():
            continue
        try:
            record = _parse_bhist_block(block, now)
        except ValueError as err:
            log.debug("Ignoring unparseable `bhist` block: %s", err)
            record = None
        if record is None:
            skipped += 1
            continue
        if record.jobid not in records:
            records[record.jobid] = record
    return ParseResult(records, skipped)


## command line construction

def task_geometry(groups):
    """
    Return the LSF task geometry string for node groups `groups` (as
    returned by `wfbatch.quantity.parse_nodespec`:func:)::

      >>> from wfbatch.quantity import parse_nodespec
      >>> task_geometry(parse_nodespec('1:ppn=4+1:ppn=2'))
      '{(0,1,2,3)(4,5)}'

    Task indexes are numbered consecutively across *all* groups, so
    each group gets `ppn` indexes in total regardless of its node count.
    """
    index = 0
    parts = []
    for group in groups:
        parts.append('(' + ','.join(
            str(i) for i in range(index, index + group.ppn)) + ')')
        index += group.ppn
    return '{' + ''.join(parts) + '}'


def bsub_command(task, bsub='bsub', wrapper=None):
    """
    Return a pair `(cmdline, env)` for submitting `task` with ``bsub``.

    Since LSF has no option to pass environment variables to a job,
    they are returned in the dictionary `env`, to be set in the
    environment of the ``bsub`` process; the job inherits them from
    there.  A ``None`` value in `env` means "leave as it is".
    """
    attrs = task.attributes
    args = [bsub]
    env = dict(task.envars)
    for name, value in attrs.items():
        if name == 'account':
            args += ['-P', value]
        elif name == 'queue':
            args += ['-q', value]
        elif name == 'cores':
            if 'nodes' in attrs:
                continue
            args += ['-n', str(value)]
        elif name == 'nodes':
            groups = parse_nodespec(value)
            ptile = max(group.ppn * group.tpp for group in groups)
            nnodes = sum(group.count for group in groups)
            args += ['-R', 'span[ptile=%d]' % ptile,
                     '-n', str(nnodes * ptile)]
            env[wfbatch.defaults.LSF_TASK_GEOMETRY_VAR] = task_geometry(groups)
        elif name == 'walltime':
            args += ['-W', seconds_to_hhmm(parse_duration(value))]
        elif name == 'memory':
            args += ['-R', 'rusage[mem=%d]' % memory_to_megabytes(value)]
        elif name in ('stdout', 'join'):
            args += ['-o', value]
        elif name == 'stderr':
            args += ['-e', value]
        elif name == 'jobname':
            args += ['-J', value]
        elif name == 'native':
            args += list(task.each_native())
    if wrapper:
        args.append(wrapper)
    args.append(attrs['command'])
    return ' '.join(args), env


class LsfBatchSystem(BatchSystem):

    """
    Job control on LSF clusters.

    Finished jobs are looked up with ``bhist``, first in the current
    event log file only, then in the last 25 log files.

    If a `wrapper` script path is given, it is placed in front of the
    task command on the ``bsub`` command line; it is expected to set up
    the task geometry found in ``$LSB_PJL_TASK_GEOMETRY``.
    """

    _acct_lookback_levels = (1, 25)

    def __init__(self, name=None, wrapper=None,
                 deep_acct_timeout=wfbatch.defaults.DEEP_ACCT_TIMEOUT,
                 **extra_args):
        BatchSystem.__init__(self, name, **extra_args)
        self.wrapper = wrapper
        self.deep_acct_timeout = int(deep_acct_timeout)
        self._bsub = self._get_command('bsub')
        self._bjobs = self._get_command('bjobs')
        self._bhist = self._get_command('bhist')
        self._bkill = self._get_command('bkill')

    _bsub_jobid_re = re.compile(r'Job <(\d+)> is submitted to (default )*queue')

    @same_docstring_as(BatchSystem.submit)
    def submit(self, task):
        cmdline, env = bsub_command(task, self._bsub, self.wrapper)
        return self._submit_command(cmdline, self._bsub_jobid_re, env)

    def _delete_command(self, jobid):
        return ('%s %s' % (self._bkill, jobid))

    def _refresh_jobqueue(self):
        command = ('%s -w' % self._bjobs)
        stdout, stderr, exitcode = self._run_query(command, self.queue_timeout)
        # depending on the LSF version, this goes to STDOUT or STDERR
        if _NO_UNFINISHED_JOB_RE.search('\n'.join([stdout, stderr])):
            return ParseResult({}, 0)
        self._check_exitcode(command, exitcode, stderr)
        return parse_bjobs_output(stdout)

    def _refresh_jobacct(self, depth):
        command = ('%s -n %d -l -d -w' % (self._bhist, depth))
        if depth == self._acct_lookback_levels[0]:
            timeout = self.acct_timeout
        else:
            timeout = self.deep_acct_timeout
        stdout, stderr, exitcode = self._run_query(command, timeout)
        # `bhist` exits with non-zero status when no job is found
        if (not stdout.strip()
                or _NO_MATCHING_JOB_RE.search('\n'.join([stdout, stderr]))):
            return ParseResult({}, 0)
        self._check_exitcode(command, exitcode, stderr)
        return parse_bhist_output(stdout)


_NO_UNFINISHED_JOB_RE = re.compile(r'^No unfinished job found$', re.M)
_NO_MATCHING_JOB_RE = re.compile(r'^No matching job found$', re.M)


# main: run tests

if "__main__" == __name__:
    import doctest
    doctest.testmod(name="lsf",
                    optionflags=doctest.NORMALIZE_WHITESPACE)
