#! /usr/bin/env python
#
"""
Job control on SLURM clusters.
"""
# Copyright (C) 2012-2016, 2019  University of Zurich. All rights reserved.
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
import tempfile

from wfbatch import log, JobRecord, JobState
import wfbatch.defaults
from wfbatch.backends import BatchSystem, ParseResult
from wfbatch.quantity import memory_to_megabytes, parse_nodespec, seconds_to_hhmmss
from wfbatch.utils import local_to_utc, same_docstring_as, sh_quote_safe


## data

# columns of the `squeue` listing, as (field name, width); the
# `-O` option of `squeue` is built from this, and each output line is
# sliced accordingly, as job names can contain spaces.
SQUEUE_COLUMNS = [
    ('jobid', 40),
    ('username', 40),
    ('numcpus', 10),
    ('partition', 20),
    ('submittime', 30),
    ('starttime', 30),
    ('endtime', 30),
    ('priority', 30),
    ('exit_code', 10),
    ('state', 30),
    ('name', 200),
]

SACCT_FIELDS = ('jobid,user%30,jobname%30,partition%20,priority,'
                'submit,start,end,ncpus,exitcode,state%12')


_SQUEUE_STATE_MAP = {}
for _state in ('CONFIGURING', 'PENDING', 'SUSPENDED', 'RESV_DEL_HOLD',
               'REQUEUE_FED', 'REQUEUE_HOLD', 'REQUEUED', 'SPECIAL_EXIT'):
    _SQUEUE_STATE_MAP[_state] = JobState.QUEUED
for _state in ('RUNNING', 'COMPLETING', 'RESIZING', 'SIGNALING',
               'STAGE_OUT', 'STOPPED'):
    _SQUEUE_STATE_MAP[_state] = JobState.RUNNING
for _state in ('CANCELLED', 'FAILED', 'NODE_FAIL', 'PREEMPTED', 'TIMEOUT',
               'BOOT_FAIL', 'DEADLINE', 'OUT_OF_MEMORY', 'REVOKED'):
    _SQUEUE_STATE_MAP[_state] = JobState.FAILED

_SACCT_STATE_MAP = {}
for _state in ('CONFIGURING', 'PENDING', 'SUSPENDED', 'REQUEUED'):
    _SACCT_STATE_MAP[_state] = JobState.QUEUED
for _state in ('RUNNING', 'COMPLETING'):
    _SACCT_STATE_MAP[_state] = JobState.RUNNING
for _state in ('CANCELLED', 'FAILED', 'NODE_FAIL', 'PREEMPTED', 'TIMEOUT',
               'OUT_OF_MEMORY', 'BOOT_FAIL', 'DEADLINE'):
    _SACCT_STATE_MAP[_state] = JobState.FAILED
del _state


## parsers

_TIMEFMT_ISO8601 = '%Y-%m-%dT%H:%M:%S'
"""
A strptime() format string for parsing ISO8601 timestamps.
"""


def _parse_timestamp(ts):
    """
    Parse a SLURM 'standard' (ISO8601) local timestamp into UTC.

    Placeholders for "no time" (empty, ``N/A``, ``Unknown``, ``None``)
    are returned as ``None``.
    """
    ts = ts.strip()
    if ts in ('', 'N/A', 'Unknown', 'None'):
        return None
    return local_to_utc(datetime.datetime.strptime(ts, _TIMEFMT_ISO8601))


def _parse_exit_code(val):
    """
    Return the exit status encoded in a SLURM ``code:signal`` pair; a
    non-zero exit code wins over the signal number::

      >>> _parse_exit_code('2:0')
      2
      >>> _parse_exit_code('0:9')
      9
      >>> _parse_exit_code('0')
      0
      >>> _parse_exit_code('') is None
      True
    """
    val = val.strip()
    if not val or val == 'N/A':
        return None
    if ':' in val:
        code, signal = [int(part) for part in val.split(':', 1)]
        if code != 0:
            return code
        return signal
    return int(val)


def _parse_number(val):
    val = val.strip()
    if not val or val == 'N/A':
        return None
    try:
        return int(val)
    except ValueError:
        return float(val)


def _classify(native_state, exit_status, state_map):
    """
    Return a pair `(state, exit_status)` for a job in SLURM state
    `native_state`.

    Only the first word of `native_state` is significant, e.g. in
    ``CANCELLED by 1000``.
    """
    words = native_state.split()
    keyword = (words[0] if words else '')
    if keyword == 'COMPLETED':
        if exit_status == 0:
            return JobState.SUCCEEDED, exit_status
        return JobState.FAILED, exit_status
    state = state_map.get(keyword, JobState.UNKNOWN)
    if state == JobState.FAILED and not exit_status:
        # failed jobs must not look successful
        exit_status = wfbatch.defaults.UNKNOWN_EXIT_STATUS
    return state, exit_status


def _slice_columns(line):
    fields = {}
    start = 0
    for name, width in SQUEUE_COLUMNS[:-1]:
        fields[name] = line[start:start+width].strip()
        start += width
    # last column extends to the end of the line
    fields[SQUEUE_COLUMNS[-1][0]] = line[start:].strip()
    return fields


_SQUEUE_STATE_OFFSET = sum(width for _, width in SQUEUE_COLUMNS[:-2])


def parse_squeue_output(stdout):
    """
    Parse the fixed-width output of ``squeue -O ...`` (with the column
    layout in `SQUEUE_COLUMNS`) into a `ParseResult`.
    """
    records = {}
    skipped = 0
    for line in stdout.split('\n'):
        if not line.strip() or line.startswith('JOBID'):
            continue
        try:
            if len(line.rstrip()) <= _SQUEUE_STATE_OFFSET:
                raise ValueError("Line too short")
            fields = _slice_columns(line)
            if not fields['jobid']:
                raise ValueError("No job ID")
            state, exit_status = _classify(
                fields['state'], _parse_exit_code(fields['exit_code']),
                _SQUEUE_STATE_MAP)
            records[fields['jobid']] = JobRecord(
                jobid=fields['jobid'],
                user=fields['username'],
                cores=_parse_number(fields['numcpus']),
                queue=fields['partition'],
                submit_time=_parse_timestamp(fields['submittime']),
                start_time=_parse_timestamp(fields['starttime']),
                end_time=_parse_timestamp(fields['endtime']),
                priority=_parse_number(fields['priority']),
                exit_status=exit_status,
                state=state,
                native_state=fields['state'],
                jobname=fields['name'],
            )
        except ValueError as err:
            log.debug("Ignoring unparseable `squeue` line '%s': %s",
                      line, err)
            skipped += 1
    return ParseResult(records, skipped)


def parse_sacct_output(stdout, username):
    """
    Parse the ``|``-delimited output of ``sacct -P -o ...`` (with the
    fields in `SACCT_FIELDS`) into a `ParseResult`.

    Only jobs owned by `username` are kept; this also filters out the
    header and the per-step lines, which have no user.
    """
    records = {}
    skipped = 0
    for line in stdout.split('\n'):
        if not line.strip():
            continue
        fields = line.split('|')
        if len(fields) < 11:
            log.debug("Ignoring unparseable `sacct` line '%s'", line)
            skipped += 1
            continue
        if fields[1].strip() != username:
            continue
        try:
            state, exit_status = _classify(
                fields[10], _parse_exit_code(fields[9]), _SACCT_STATE_MAP)
            jobid = fields[0].strip()
            records[jobid] = JobRecord(
                jobid=jobid,
                user=fields[1].strip(),
                jobname=fields[2],
                queue=fields[3],
                priority=_parse_number(fields[4]),
                submit_time=_parse_timestamp(fields[5]),
                start_time=_parse_timestamp(fields[6]),
                end_time=_parse_timestamp(fields[7]),
                cores=_parse_number(fields[8]),
                exit_status=exit_status,
                state=state,
                native_state=fields[10].strip(),
            )
        except ValueError as err:
            log.debug("Ignoring unparseable `sacct` line '%s': %s", line, err)
            skipped += 1
    return ParseResult(records, skipped)


## submission

_WALLTIME_DAYS_RE = re.compile(r'^(\d+):(\d+:\d+:\d+)$')


def sbatch_script(task):
    """
    Return the text of a batch script for submitting `task` with ``sbatch``.

    Resource requests are written as ``#SBATCH`` directives, and the
    task environment as ``export`` statements; the task command is the
    last line of the script.
    """
    attrs = task.attributes
    lines = ['#!/bin/sh']
    for name, value in attrs.items():
        if isinstance(value, str) and not value:
            log.warning("Task attribute `%s` is empty and will be ignored",
                        name)
            continue
        if name == 'account':
            lines.append('#SBATCH --account %s' % value)
        elif name == 'queue':
            lines.append('#SBATCH --qos %s' % value)
        elif name == 'partition':
            lines.append('#SBATCH --partition %s' % value.replace(':', ','))
        elif name == 'cores':
            if 'nodes' in attrs:
                continue
            lines.append('#SBATCH --ntasks=%d' % value)
        elif name == 'nodes':
            groups = parse_nodespec(value)
            nnodes = sum(group.count for group in groups)
            maxppn = max([1] + [group.ppn for group in groups])
            lines.append('#SBATCH --nodes=%d-%d' % (nnodes, nnodes))
            lines.append('#SBATCH --tasks-per-node=%d' % maxppn)
            if len(groups) > 1:
                log.warning(
                    "SLURM batch jobs cannot have a non-uniform task"
                    " geometry: node request '%s' has been converted to"
                    " '%d:ppn=%d'.  Use `srun -m` or similar tools in the"
                    " job script to lay out tasks as desired.",
                    value, nnodes, maxppn)
        elif name == 'walltime':
            value = str(value)
            if value.isdigit():
                value = seconds_to_hhmmss(value)
            lines.append('#SBATCH -t %s' % _WALLTIME_DAYS_RE.sub(r'\1-\2', value))
        elif name == 'memory':
            amount = memory_to_megabytes(value)
            if amount > 0:
                lines.append('#SBATCH --mem=%d' % amount)
        elif name in ('stdout', 'join'):
            lines.append('#SBATCH -o %s' % value)
        elif name == 'stderr':
            lines.append('#SBATCH -e %s' % value)
        elif name == 'jobname':
            lines.append('#SBATCH --job-name %s' % value)
    for value in task.each_native():
        lines.append('#SBATCH %s' % value)
    for name, value in task.envars.items():
        if value is None:
            lines.append('export %s' % name)
        else:
            lines.append('export %s=%s' % (name, sh_quote_safe(value)))
    lines.append(attrs['command'])
    return '\n'.join(lines) + '\n'


class SlurmBatchSystem(BatchSystem):

    """
    Job control on SLURM clusters.

    Finished jobs are looked up with ``sacct``, first over the last
    day, then over the last 5 days.
    """

    _acct_lookback_levels = (1, 5)

    def __init__(self, name=None,
                 queue_timeout=wfbatch.defaults.SLURM_TIMEOUT,
                 acct_timeout=wfbatch.defaults.SLURM_TIMEOUT,
                 **extra_args):
        BatchSystem.__init__(self, name,
                             queue_timeout=queue_timeout,
                             acct_timeout=acct_timeout,
                             **extra_args)
        self._sbatch = self._get_command('sbatch')
        self._squeue = self._get_command('squeue')
        self._sacct = self._get_command('sacct')
        self._scancel = self._get_command('scancel')

    _sbatch_jobid_re = re.compile(r'^Submitted batch job (\d+)')

    @same_docstring_as(BatchSystem.submit)
    def submit(self, task):
        script = sbatch_script(task)
        with tempfile.NamedTemporaryFile(
                mode='w', prefix='sbatch.', suffix='.sh') as script_file:
            script_file.write(script)
            script_file.flush()
            log.debug("Batch script %s:\n%s", script_file.name, script)
            return self._submit_command(
                '%s < %s' % (self._sbatch, script_file.name),
                self._sbatch_jobid_re)

    def _delete_command(self, jobid):
        return ('%s %s' % (self._scancel, jobid))

    def _refresh_jobqueue(self):
        columns = ','.join('%s:%d' % col for col in SQUEUE_COLUMNS)
        command = ('env SLURM_TIME_FORMAT=standard %s -u %s -t all -O %s'
                   % (self._squeue, self._username, columns))
        stdout, stderr, exitcode = self._run_query(command, self.queue_timeout)
        self._check_exitcode(command, exitcode, stderr)
        return parse_squeue_output(stdout)

    def _refresh_jobacct(self, depth):
        start = datetime.datetime.now() - datetime.timedelta(days=depth)
        command = ('env SLURM_TIME_FORMAT=standard %s -S %s -L -o %s -P'
                   % (self._sacct, start.strftime('%m%d%y'), SACCT_FIELDS))
        stdout, stderr, exitcode = self._run_query(command, self.acct_timeout)
        if 'SLURM accounting storage is disabled' in stderr:
            return ParseResult({}, 0)
        self._check_exitcode(command, exitcode, stderr)
        return parse_sacct_output(stdout, self._username)


# main: run tests

if "__main__" == __name__:
    import doctest
    doctest.testmod(name="slurm",
                    optionflags=doctest.NORMALIZE_WHITESPACE)
