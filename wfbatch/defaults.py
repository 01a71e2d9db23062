#! /usr/bin/env python
#
"""
Default values and constants used throughout `wfbatch`.
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


import os


RCDIR = os.path.join(os.path.expandvars('$HOME'), ".wfbatch")
"""
Default directory where all `wfbatch`-related files are stored.
"""

CONFIG_FILE_LOCATIONS = [
    # system-wide config file
    "/etc/wfbatch/wfbatch.conf",
    # virtualenv config file
    os.path.expandvars("$VIRTUAL_ENV/etc/wfbatch/wfbatch.conf"),
    # user-private config file: first look into `$WFBATCH_CONF`, and
    # fall-back to `~/.wfbatch/wfbatch.conf`
    os.environ.get('WFBATCH_CONF', os.path.join(RCDIR, "wfbatch.conf"))
]
"""
List of filesystem locations where config files would be read from.
"""


LSF_BATCH = 'lsf'
MOABTORQUE_BATCH = 'moabtorque'
TORQUE_BATCH = 'torque'
SLURM_BATCH = 'slurm'


QUEUE_TIMEOUT = 30
"""
Time (in seconds) allowed to the live-queue listing commands.
"""

ACCT_TIMEOUT = 30
"""
Time (in seconds) allowed to the accounting commands at the shallowest
lookback depth.
"""

DEEP_ACCT_TIMEOUT = 90
"""
Time (in seconds) allowed to LSF ``bhist`` when it scans many log files.
"""

SLURM_TIMEOUT = 45
"""
Time (in seconds) allowed to ``squeue`` and ``sacct``.
"""

SUBMIT_TIMEOUT = 30
"""
Time (in seconds) allowed to a job submission command.
"""

DELETE_TIMEOUT = 30
"""
Time (in seconds) allowed to a job cancellation command.
"""


UNKNOWN_EXIT_STATUS = 255
"""
Exit status assigned to jobs that terminated without a usable exit code.
"""

LSF_TASK_GEOMETRY_VAR = 'LSB_PJL_TASK_GEOMETRY'
"""
Environment variable carrying the LSF task geometry string.
"""

TRACEJOB_DAYS = 5
"""
Number of days of Torque server logs scanned by ``tracejob``.
"""
