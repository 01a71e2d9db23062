#! /usr/bin/env python
#
"""
"""
# Copyright (C) 2012-2019  University of Zurich. All rights reserved.
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

import datetime

# 3rd party imports
import pytest

# wfbatch imports
from wfbatch import JobRecord, JobState, TaskSpec, TERMINAL_STATES
import wfbatch.exceptions
from wfbatch.backends.lsf import bsub_command
from wfbatch.backends.slurm import sbatch_script
from wfbatch.backends.torque import qsub_command


__docformat__ = 'reStructuredText'


## TaskSpec

def test_taskspec_preserves_order():
    task = TaskSpec([('walltime', '01:00:00'), ('queue', 'batch'),
                     ('account', 'proj'), ('command', '/bin/true')])
    assert list(task.attributes) == ['walltime', 'queue', 'account',
                                     'command']


def test_taskspec_from_dict():
    task = TaskSpec({'queue': 'batch', 'command': '/bin/true'},
                    envars={'FOO': 'bar'})
    assert task.attributes['queue'] == 'batch'
    assert task.envars['FOO'] == 'bar'


def test_taskspec_is_read_only():
    task = TaskSpec([('command', '/bin/true')], envars={'FOO': 'bar'})
    with pytest.raises(TypeError):
        task.attributes['queue'] = 'batch'
    with pytest.raises(TypeError):
        task.envars['FOO'] = 'baz'
    with pytest.raises(AttributeError):
        task.attributes = {}


def test_taskspec_copies_its_arguments():
    attrs = {'command': '/bin/true'}
    envars = {'FOO': 'bar'}
    task = TaskSpec(attrs, envars)
    attrs['queue'] = 'batch'
    envars['FOO'] = 'baz'
    assert 'queue' not in task.attributes
    assert task.envars['FOO'] == 'bar'


def test_taskspec_requires_command():
    with pytest.raises(wfbatch.exceptions.InvalidArgument):
        TaskSpec([('queue', 'batch')])
    with pytest.raises(wfbatch.exceptions.InvalidArgument):
        TaskSpec([('command', '')])


def test_taskspec_rejects_unknown_attributes():
    with pytest.raises(wfbatch.exceptions.InvalidArgument):
        TaskSpec([('colour', 'blue'), ('command', '/bin/true')])


def test_taskspec_drops_unset_cores():
    task = TaskSpec([('cores', None), ('command', '/bin/true')])
    assert 'cores' not in task.attributes
    # no adapter emits a core count for it
    assert 'ntasks' not in sbatch_script(task)
    assert 'procs' not in qsub_command(task)
    assert bsub_command(task)[0] == 'bsub /bin/true'


def test_taskspec_cores():
    task = TaskSpec([('cores', '16'), ('command', '/bin/true')])
    assert task.attributes['cores'] == 16
    with pytest.raises(wfbatch.exceptions.InvalidValue):
        TaskSpec([('cores', 'many'), ('command', '/bin/true')])


def test_taskspec_native():
    task = TaskSpec([('native', '-x'), ('command', '/bin/true')])
    assert list(task.each_native()) == ['-x']
    task = TaskSpec([('native', ['-x', '-R "select[mem>100]"']),
                     ('command', '/bin/true')])
    assert list(task.each_native()) == ['-x', '-R "select[mem>100]"']
    task = TaskSpec([('command', '/bin/true')])
    assert list(task.each_native()) == []


def test_taskspec_no_envars():
    task = TaskSpec([('command', '/bin/true')])
    assert len(task.envars) == 0


## JobRecord

def test_jobrecord_fields_default_to_none():
    job = JobRecord(jobid='1', state=JobState.QUEUED)
    for name in JobRecord.FIELDS:
        assert name in job
    assert job.queue is None
    assert job.start_time is None


def test_jobrecord_invalid_state():
    with pytest.raises(wfbatch.exceptions.InvalidValue):
        JobRecord(jobid='1', state='DONE')
    with pytest.raises(wfbatch.exceptions.InvalidValue):
        JobRecord(jobid='1')


def test_jobrecord_exit_status_only_on_terminal_states():
    job = JobRecord(jobid='1', state=JobState.RUNNING, exit_status=0)
    assert job.exit_status is None
    job = JobRecord(jobid='1', state=JobState.SUCCEEDED, exit_status=0)
    assert job.exit_status == 0
    job = JobRecord(jobid='1', state=JobState.FAILED)
    assert job.exit_status == 255
    assert JobState.FAILED in TERMINAL_STATES
    assert JobState.UNKNOWN not in TERMINAL_STATES


def test_jobrecord_unknown():
    job = JobRecord.unknown('42')
    assert job.jobid == '42'
    assert job.state == JobState.UNKNOWN
    assert job.native_state == 'Unknown'
    assert job.exit_status is None


def test_jobrecord_unavailable():
    job = JobRecord.unavailable('42')
    assert job.state == JobState.UNAVAILABLE
    assert job.native_state == 'Unavailable'


def test_jobrecord_unknown_has_no_times():
    now = datetime.datetime.now(tz=datetime.timezone.utc)
    job = JobRecord(jobid='1', state=JobState.UNKNOWN, submit_time=now)
    assert job.submit_time is None


def test_jobrecord_extra_keys():
    job = JobRecord(jobid='1', state=JobState.RUNNING, MasterHost='node01')
    assert job['MasterHost'] == 'node01'
    assert job.copy() == job


if "__main__" == __name__:
    pytest.main(["-v", __file__])
