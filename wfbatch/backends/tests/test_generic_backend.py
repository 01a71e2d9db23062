#! /usr/bin/env python
#
"""
Check that all the backends implement the needed methods, and
exercise the status lookup logic they share.
"""
# Copyright (C) 2012-2016  University of Zurich. All rights reserved.
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

import pytest

from wfbatch import JobRecord, JobState
import wfbatch.exceptions
from wfbatch.backends import BatchSystem, ParseResult

from faketransport import FakeTransport


def check_class(cls):
    for name in [  # list of abstract methods in class `BatchSystem`
            'submit',
            '_delete_command',
            '_refresh_jobqueue',
    ]:
        if getattr(cls, name) == getattr(BatchSystem, name):
            raise NotImplementedError(
                "Abstract method `%s` not implemented in class `%s`"
                % (name, cls.__name__))
    if (cls._acct_lookback_levels
            and cls._refresh_jobacct == BatchSystem._refresh_jobacct):
        raise NotImplementedError(
            "Class `%s` has accounting lookback levels"
            " but does not implement `_refresh_jobacct`" % cls.__name__)


def test_lsf_backends():
    from wfbatch.backends.lsf import LsfBatchSystem
    check_class(LsfBatchSystem)


def test_moab_backends():
    from wfbatch.backends.moab import MoabTorqueBatchSystem
    check_class(MoabTorqueBatchSystem)


def test_torque_backends():
    from wfbatch.backends.torque import TorqueBatchSystem
    check_class(TorqueBatchSystem)


def test_slurm_backends():
    from wfbatch.backends.slurm import SlurmBatchSystem
    check_class(SlurmBatchSystem)


class StubBatchSystem(BatchSystem):

    """
    Batch system whose queue and accounting records are given as
    dictionaries; `queue` and `acct` may also be exceptions, which are
    raised when the corresponding cache is refreshed.
    """

    _acct_lookback_levels = (1, 5, 30)

    def __init__(self, queue, acct, fallback=None, **extra_args):
        BatchSystem.__init__(self, name='stub', transport=FakeTransport(),
                             username='user', **extra_args)
        self.queue = queue
        self.acct = acct
        self.fallback = fallback or {}
        self.refreshed = []

    def _refresh_jobqueue(self):
        self.refreshed.append('queue')
        if isinstance(self.queue, Exception):
            raise self.queue
        return ParseResult(dict(self.queue), 0)

    def _refresh_jobacct(self, depth):
        self.refreshed.append(depth)
        if isinstance(self.acct, Exception):
            raise self.acct
        return ParseResult(dict(self.acct.get(depth, {})), 1)

    def _fallback_status(self, jobid):
        self.refreshed.append('fallback')
        return self.fallback.get(jobid)


def running(jobid):
    return JobRecord(jobid=jobid, state=JobState.RUNNING, native_state='R')


def done(jobid, exit_status=0):
    return JobRecord(jobid=jobid, native_state='C', exit_status=exit_status,
                     state=(JobState.SUCCEEDED if exit_status == 0
                            else JobState.FAILED))


def test_queue_is_loaded_once():
    b = StubBatchSystem({'1': running('1'), '2': running('2')}, {})
    assert b.status('1').state == JobState.RUNNING
    assert b.status('2').state == JobState.RUNNING
    assert b.status(1).state == JobState.RUNNING
    assert b.refreshed == ['queue']


def test_status_returns_identical_records():
    b = StubBatchSystem({'1': running('1')}, {1: {'2': done('2')}})
    assert b.status('1') == b.status('1')
    assert b.status('2') == b.status('2')
    assert b.refreshed == ['queue', 1]


def test_lookback_escalation():
    b = StubBatchSystem({}, {
        1: {'1': done('1')},
        5: {'1': done('1'), '5': done('5', 1)},
        30: {'1': done('1'), '5': done('5', 1), '30': done('30', 2)},
    })
    assert b.acct_depth is None
    assert b.status('5').exit_status == 1
    assert b.acct_depth == 5
    assert b.refreshed == ['queue', 1, 5]
    # found in the current (deeper) cache: no more queries
    assert b.status('1').state == JobState.SUCCEEDED
    assert b.refreshed == ['queue', 1, 5]
    assert b.status('30').exit_status == 2
    assert b.acct_depth == 30
    assert b.refreshed == ['queue', 1, 5, 30]


def test_lookback_exhausted():
    b = StubBatchSystem({}, {1: {}, 5: {}, 30: {}})
    assert b.status('1').state == JobState.UNKNOWN
    assert b.refreshed == ['queue', 1, 5, 30, 'fallback']
    assert b.status('2').state == JobState.UNKNOWN
    assert b.refreshed == ['queue', 1, 5, 30, 'fallback', 'fallback']
    assert b.acct_depth == 30
    assert b.available


def test_fallback():
    b = StubBatchSystem({}, {}, fallback={'7': done('7', 3)})
    assert b.status('7').exit_status == 3
    assert b.refreshed == ['queue', 1, 5, 30, 'fallback']


def test_unknown_record():
    b = StubBatchSystem({}, {})
    job = b.status('42')
    assert job.jobid == '42'
    assert job.state == JobState.UNKNOWN
    assert job.native_state == 'Unknown'
    assert job.exit_status is None


def test_guard_trips_on_queue_failure():
    b = StubBatchSystem(wfbatch.exceptions.SchedulerDown("down"), {})
    job = b.status('1')
    assert job.state == JobState.UNAVAILABLE
    assert job.native_state == 'Unavailable'
    assert not b.available
    assert b.status('2').state == JobState.UNAVAILABLE
    assert b.refreshed == ['queue']


def test_guard_trips_on_accounting_failure():
    b = StubBatchSystem({'1': running('1')},
                        wfbatch.exceptions.CommandTimeout("timed out"))
    assert b.status('2').state == JobState.UNAVAILABLE
    assert not b.available
    # once down, even cached jobs are reported as unavailable
    assert b.status('1').state == JobState.UNAVAILABLE
    assert b.refreshed == ['queue', 1]


def test_guard_trips_on_fallback_failure():
    b = StubBatchSystem({}, {})

    def fail(jobid):
        raise wfbatch.exceptions.SchedulerDown("down")
    b._fallback_status = fail
    assert b.status('1').state == JobState.UNAVAILABLE
    assert not b.available


def test_statuses():
    b = StubBatchSystem({'1': running('1')}, {1: {'2': done('2')}})
    result = b.statuses(['1', '2', '3'])
    assert sorted(result) == ['1', '2', '3']
    assert result['1'].state == JobState.RUNNING
    assert result['2'].state == JobState.SUCCEEDED
    assert result['3'].state == JobState.UNKNOWN
    assert b.refreshed == ['queue', 1, 5, 30, 'fallback']


def test_get_command():
    b = StubBatchSystem({}, {}, squeue='/opt/slurm/bin/squeue')
    assert b._get_command('squeue') == '/opt/slurm/bin/squeue'
    assert b._get_command('sacct') == 'sacct'
    assert b._get_command('sacct', '/usr/bin/sacct') == '/usr/bin/sacct'


def test_unknown_transport():
    with pytest.raises(wfbatch.exceptions.TransportError):
        BatchSystem(transport='ssh', username='user')


def test_abstract_submit():
    b = BatchSystem(username='user')
    with pytest.raises(NotImplementedError):
        b.submit(None)


if "__main__" == __name__:
    pytest.main(["-v", __file__])
