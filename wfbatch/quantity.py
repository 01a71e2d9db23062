#! /usr/bin/env python
#
"""
Parsing of resource quantities found in task specifications:
memory amounts, durations, and node geometries.
"""

# Copyright (C) 2011 - 2014, 2019,  University of Zurich. All rights reserved.
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


from collections import namedtuple
import math
import re

from wfbatch.exceptions import InvalidValue


## memory

_QTY_RE = re.compile(
    r'^\s*(?P<amount>([0-9]+(\.[0-9]*)?|\.[0-9]+))'
    r'\s*'
    r'(?P<unit>[a-z]*)\s*$',
    re.I)

_MEGABYTES_PER_UNIT = {
    '': 1.0 / 1024 / 1024,
    'b': 1.0 / 1024 / 1024,
    'k': 1.0 / 1024,
    'm': 1.0,
    'g': 1024.0,
}


def _split_amount_and_unit(val):
    """
    Split `val` into amount and measurement unit.

    The string to be parsed should consist of a number, followed by a
    unit specification. The number and the unit may be separated by 0
    or more spaces.

      >>> _split_amount_and_unit('7 G') == (7.0, 'G')
      True
      >>> _split_amount_and_unit('1.5k') == (1.5, 'k')
      True
      >>> _split_amount_and_unit('512') == (512.0, '')
      True

    If `val` does not conform to this syntax, an `InvalidValue` error
    is raised.
    """
    match = _QTY_RE.match(str(val))
    if not match:
        raise InvalidValue("Cannot parse quantity '%s'" % val)
    return (float(match.group('amount')), match.group('unit'))


def memory_to_megabytes(val):
    """
    Convert memory amount `val` to an integral number of megabytes,
    rounding up.

    The unit is the first letter of the suffix, one of ``B``, ``K``,
    ``M`` or ``G`` (case does not matter); a unitless amount is taken
    to be in bytes::

      >>> memory_to_megabytes('4096M')
      4096
      >>> memory_to_megabytes('4G')
      4096
      >>> memory_to_megabytes('2048K')
      2
      >>> memory_to_megabytes('2049k')
      3
      >>> memory_to_megabytes('1048576')
      1
      >>> memory_to_megabytes('0.5gb')
      512
    """
    amount, unit = _split_amount_and_unit(val)
    key = unit[:1].lower()
    if key not in _MEGABYTES_PER_UNIT:
        raise InvalidValue(
            "Unknown memory unit '%s' in '%s': only B, K, M and G are allowed."
            % (unit, val))
    return int(math.ceil(amount * _MEGABYTES_PER_UNIT[key]))


## durations

_DURATION_RE = re.compile(
    r'^\s*((?P<days>[0-9]+)[-:])?'
    r'((?P<hours>[0-9]+):)?'
    r'((?P<minutes>[0-9]+):)?'
    r'(?P<seconds>[0-9]+)\s*$')


def parse_duration(val):
    """
    Return the number of seconds in duration `val`.

    Durations are either a plain number of seconds, or colon-separated
    ``[[[dd:]hh:]mm:]ss`` fields; the days may also be separated by a
    dash, as in ``dd-hh:mm:ss``::

      >>> parse_duration('3600')
      3600
      >>> parse_duration('01:30:00')
      5400
      >>> parse_duration('1-00:00:10')
      86410
      >>> parse_duration('2:00')
      120

    An integer argument is returned unchanged.
    """
    if isinstance(val, int):
        return val
    text = str(val)
    match = _DURATION_RE.match(text)
    if not match or ('-' in text and text.count(':') != 2):
        raise InvalidValue("Cannot parse duration '%s'" % val)
    # right-align colon-separated fields: the last one is seconds
    fields = [int(f) for f in re.split('[-:]', text.strip())]
    seconds = 0
    for factor, amount in zip((1, 60, 3600, 86400), reversed(fields)):
        seconds += factor * amount
    return seconds


def seconds_to_hhmm(secs):
    """
    Format duration `secs` as ``hh:mm``, rounding up to the next whole
    minute.  Hours are not wrapped at 24::

      >>> seconds_to_hhmm(5400)
      '01:30'
      >>> seconds_to_hhmm(90061)
      '25:02'
    """
    minutes = int(math.ceil(secs / 60.0))
    return '%02d:%02d' % (minutes // 60, minutes % 60)


def seconds_to_hhmmss(secs):
    """
    Format duration `secs` as ``hh:mm:ss``; hours are not wrapped at 24::

      >>> seconds_to_hhmmss(3600)
      '01:00:00'
      >>> seconds_to_hhmmss(93784)
      '26:03:04'
    """
    secs = int(secs)
    return '%02d:%02d:%02d' % (secs // 3600, (secs % 3600) // 60, secs % 60)


## node geometry

NodeGroup = namedtuple('NodeGroup', ['count', 'ppn', 'tpp'])
"""
One ``+``-separated group of a node specification: `count` nodes,
each running `ppn` processes with `tpp` threads per process.
"""


_NODE_RESOURCE_RE = re.compile(r'^(?P<name>ppn|tpp)=(?P<value>[0-9]+)$')


def parse_nodespec(spec):
    """
    Parse node geometry string `spec` into a list of `NodeGroup`:class:
    tuples.  A missing ``ppn`` defaults to 0, a missing ``tpp`` to 1::

      >>> parse_nodespec('2:ppn=4+1:ppn=2:tpp=3')
      [NodeGroup(count=2, ppn=4, tpp=1), NodeGroup(count=1, ppn=2, tpp=3)]
      >>> parse_nodespec('3')
      [NodeGroup(count=3, ppn=0, tpp=1)]

    Unknown resource names within a group are ignored.
    """
    groups = []
    for group in str(spec).split('+'):
        resources = group.strip().split(':')
        try:
            count = int(resources[0])
        except ValueError:
            raise InvalidValue(
                "Cannot parse node count in node specification '%s'" % spec)
        ppn = 0
        tpp = 1
        for resource in resources[1:]:
            match = _NODE_RESOURCE_RE.match(resource.strip())
            if not match:
                continue
            if match.group('name') == 'ppn':
                ppn = int(match.group('value'))
            else:
                tpp = int(match.group('value'))
        groups.append(NodeGroup(count, ppn, tpp))
    return groups


## main: run tests

if "__main__" == __name__:
    import doctest
    doctest.testmod(name="quantity",
                    optionflags=doctest.NORMALIZE_WHITESPACE)
