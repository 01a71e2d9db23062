#! /usr/bin/env python
#
"""
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

import datetime

import pytest

from wfbatch import JobState, TaskSpec
import wfbatch.exceptions
from wfbatch.backends.moab import (MoabTorqueBatchSystem,
                                   parse_showq_completed_output,
                                   parse_showq_output)

from faketransport import FakeTransport
from test_torque import (QSTAT_XML, correct_tracejob_done, qstat_empty,
                         tracejob_notfound)


SHOWQ_XML = """<Data><Object>queue</Object>\
<cluster LocalActiveNodes="10" LocalAllocProcs="40" LocalConfigNodes="12" \
LocalIdleNodes="2" LocalIdleProcs="8" LocalUpNodes="12" LocalUpProcs="48" \
RemoteActiveNodes="0" RemoteAllocProcs="0" RemoteConfigNodes="0" \
RemoteIdleNodes="0" RemoteIdleProcs="0" RemoteUpNodes="0" RemoteUpProcs="0" \
time="1331285700"></cluster>\
<queue count="1" option="active">\
<job AWDuration="177" Class="batch" DRMJID="300.torque.example.org" \
JobID="300" JobName="wf_running" MasterHost="node01" PAL="cluster" \
ReqAWDuration="3600" ReqProcs="4" RsvStartTime="1331285523" \
RunPriority="1234" StartPriority="1234" StartTime="1331285523" \
StatPSDed="708.000000" StatPSUtl="700.5" State="Running" \
SubmissionTime="1331285513" SuspendDuration="0" User="user"></job>\
</queue>\
<queue count="2" option="eligible">\
<job Class="batch" DRMJID="301.torque.example.org" EEDuration="60" \
GJID="301" Group="users" JobID="301" JobName="wf_idle" ReqAWDuration="3600" \
ReqProcs="1" StartPriority="100" StartTime="0" State="Idle" \
SubmissionTime="1331285513" SuspendDuration="0" User="user"></job>\
<job Class="batch" JobID="302" JobName="wf_deferred" ReqProcs="1" \
State="Deferred" SubmissionTime="1331285513" User="user"></job>\
</queue>\
<queue count="1" option="blocked">\
<job Class="batch" JobID="303" JobName="wf_held" ReqProcs="1" \
State="UserHold" SubmissionTime="1331285513" User="user"></job>\
</queue></Data>
"""

SHOWQ_COMPLETED_XML = """<Data><Object>queue</Object>\
<queue count="4" option="completed">\
<job AWDuration="125" Class="batch" CompletionCode="0" \
CompletionTime="1331285648" DRMJID="310.torque.example.org" JobID="310" \
JobName="wf_done" ReqAWDuration="3600" ReqProcs="1" StartTime="1331285523" \
State="Completed" SubmissionTime="1331285513" User="user"></job>\
<job AWDuration="5" Class="batch" CompletionCode="3" \
CompletionTime="1331285648" JobID="311" JobName="wf_failed" ReqProcs="1" \
StartTime="1331285643" State="Completed" SubmissionTime="1331285513" \
User="user" Partition="cluster"></job>\
<job Class="batch" CompletionCode="CNCLD" CompletionTime="1331285648" \
JobID="312" JobName="wf_cancelled" ReqProcs="1" State="Completed" \
SubmissionTime="1331285513" User="user"></job>\
<job Class="batch" CompletionCode="0" CompletionTime="1331285648" \
JobID="313" JobName="wf_removed" ReqProcs="1" State="Removed" \
SubmissionTime="1331285513" User="user"></job>\
<job Class="batch" CompletionCode="1" CompletionTime="1331285600" \
JobID="310" JobName="wf_done" ReqProcs="1" State="Completed" \
SubmissionTime="1331285513" User="user"></job>\
</queue></Data>
"""


def showq_output():
    return (0, SHOWQ_XML, "")


def showq_completed_output():
    return (0, SHOWQ_COMPLETED_XML, "")


def showq_dispatch(active, completed):
    """Answer `showq` and `showq -c` with different outputs."""
    def showq(command, env):
        if ' -c ' in command:
            return completed
        return active
    return showq


def make_moab(answers=None, **extra_args):
    transport = FakeTransport(answers)
    return MoabTorqueBatchSystem(name='test', transport=transport,
                                 username='user', **extra_args)


## parsers

def test_parse_showq_output():
    result = parse_showq_output(SHOWQ_XML)
    assert set(result.records) == set(['300', '301', '302', '303'])
    running = result.records['300']
    assert running.state == JobState.RUNNING
    assert running.native_state == 'Running'
    assert running.jobname == 'wf_running'
    assert running.queue == 'batch'
    assert running.cores == 4
    assert running.priority == 1234
    assert running.start_time == datetime.datetime(
        2012, 3, 9, 9, 32, 3, tzinfo=datetime.timezone.utc)
    # attributes with no canonical counterpart are kept as they are
    assert running['MasterHost'] == 'node01'

    idle = result.records['301']
    assert idle.state == JobState.QUEUED
    # a zero start time means "not started yet"
    assert idle.start_time is None
    assert result.records['302'].state == JobState.QUEUED
    assert result.records['303'].state == JobState.QUEUED


def test_parse_showq_output_empty():
    assert parse_showq_output("").records == {}


def test_parse_showq_output_garbage():
    with pytest.raises(wfbatch.exceptions.SchedulerDown):
        parse_showq_output("ERROR:  cannot connect to Moab server")


def test_parse_showq_completed_output():
    result = parse_showq_completed_output(SHOWQ_COMPLETED_XML)
    assert set(result.records) == set(['310', '311', '312', '313'])

    done = result.records['310']
    assert done.state == JobState.SUCCEEDED
    assert done.exit_status == 0
    assert done.end_time == datetime.datetime(
        2012, 3, 9, 9, 34, 8, tzinfo=datetime.timezone.utc)

    failed = result.records['311']
    assert failed.state == JobState.FAILED
    assert failed.exit_status == 3

    cancelled = result.records['312']
    assert cancelled.state == JobState.FAILED
    assert cancelled.exit_status == 255

    removed = result.records['313']
    assert removed.state == JobState.FAILED
    assert removed.exit_status == 255
    assert removed.native_state == 'Removed'


def test_parse_showq_completed_output_no_completion_code():
    result = parse_showq_completed_output(
        '<Data><queue option="completed">'
        '<job JobID="9" State="Completed" User="user"></job>'
        '</queue></Data>')
    assert result.skipped == 0
    assert result.records['9'].state == JobState.SUCCEEDED
    assert result.records['9'].exit_status == 0


## submission

def test_submit():
    moab = make_moab({'qsub': (0, "4321.torque.example.org\n", "")})
    task = TaskSpec([('cores', 2), ('command', '/bin/true')],
                    envars={'WF_CYCLE': '201203090000'})
    jobid, output = moab.submit(task)
    assert jobid == '4321'
    assert moab.transport.commands[-1][0] == (
        'qsub -l procs=2 -v WF_CYCLE="201203090000" /bin/true')


## status

def test_status_from_showq():
    moab = make_moab({
        'showq': showq_dispatch(showq_output(), showq_completed_output()),
        'qstat': qstat_empty(),
        'tracejob': tracejob_notfound(),
    })
    assert moab.status('300').state == JobState.RUNNING
    assert moab.status('301').state == JobState.QUEUED
    assert moab.acct_depth is None
    assert moab.status('311').exit_status == 3
    assert moab.acct_depth == 1
    assert moab.transport.count('showq') == 2
    assert moab.transport.count('qstat') == 0


def test_status_falls_back_to_torque():
    moab = make_moab({
        'showq': showq_dispatch(showq_output(), showq_completed_output()),
        'qstat': (0, QSTAT_XML, ""),
        'tracejob': tracejob_notfound(),
    })
    # not (yet) known to Moab, but known to Torque
    job = moab.status('123')
    assert job.state == JobState.QUEUED
    assert job.jobname == 'wf_queued'


def test_status_falls_back_to_tracejob():
    moab = make_moab({
        'showq': showq_dispatch(showq_output(), showq_completed_output()),
        'qstat': qstat_empty(),
        'tracejob': correct_tracejob_done(400),
    })
    job = moab.status('400')
    assert job.state == JobState.SUCCEEDED
    assert moab.available


def test_status_unknown():
    moab = make_moab({
        'showq': showq_dispatch(showq_output(), showq_completed_output()),
        'qstat': qstat_empty(),
        'tracejob': tracejob_notfound(),
    })
    job = moab.status('999')
    assert job.state == JobState.UNKNOWN
    assert job.native_state == 'Unknown'


def test_status_torque_down():
    moab = make_moab({
        'showq': showq_dispatch(showq_output(), showq_completed_output()),
        'qstat': (111, "", "qstat: cannot connect to server\n"),
        'tracejob': tracejob_notfound(),
    })
    # jobs Moab knows about are still reported
    assert moab.status('300').state == JobState.RUNNING
    assert moab.status('999').state == JobState.UNAVAILABLE


def test_status_scheduler_down():
    moab = make_moab({
        'showq': (1, "", "ERROR:    cannot connect to Moab server\n"),
        'qstat': qstat_empty(),
        'tracejob': tracejob_notfound(),
    })
    assert moab.status('300').state == JobState.UNAVAILABLE
    assert not moab.available
    assert moab.status('301').state == JobState.UNAVAILABLE
    assert moab.transport.count('showq') == 1


def test_status_stderr_is_ignored():
    moab = make_moab({
        'showq': showq_dispatch(
            (0, SHOWQ_XML, "WARNING:  cannot load checkpoint file\n"),
            showq_completed_output()),
    })
    assert moab.status('300').state == JobState.RUNNING


def test_status_showq_timeout():
    moab = make_moab({
        'showq': wfbatch.exceptions.CommandTimeout("timed out"),
    })
    assert moab.status('300').state == JobState.UNAVAILABLE
    assert not moab.available


def test_delete():
    moab = make_moab({'qdel': (0, "", "")})
    moab.delete('300')
    assert moab.transport.commands[-1][0] == 'qdel 300'


def test_torque_shares_settings():
    moab = make_moab(queue_timeout=10, qstat='/opt/torque/bin/qstat')
    assert moab._torque.transport is moab.transport
    assert moab._torque._username == 'user'
    assert moab._torque.queue_timeout == 10
    assert moab._torque._qstat == '/opt/torque/bin/qstat'


if "__main__" == __name__:
    pytest.main(["-v", __file__])
