#! /usr/bin/env python

"""
Generic Python programming utility functions.

This module collects general utility functions, not specifically
related to batch systems.  A good rule of thumb for determining if a
function or class belongs in here is the following: place a function
or class in this module if you could copy its code into the
sources of a different project and it would not stop working.
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

__docformat__ = 'reStructuredText'


from collections.abc import MutableMapping
import datetime
import getpass
import re


## enumerations

class Enum(frozenset):
    """
    A generic enumeration class.  Inspired by: http://goo.gl/1AL5N0
    with some more syntactic sugar added.

    An `Enum` class must be instanciated with a list of strings, that
    make the enumeration "label"::

      >>> Animal = Enum('CAT', 'DOG')

    Each label is available as an instance attribute, evaluating to
    itself::

      >>> Animal.DOG
      'DOG'

      >>> Animal.CAT == 'CAT'
      True

    As a consequence, you can test for presence of an enumeration
    label by string value::

      >>> 'DOG' in Animal
      True

    Finally, enumeration labels can also be iterated upon::

      >>> for a in sorted(Animal): print(a)
      CAT
      DOG
    """
    def __new__(cls, *args):
        return frozenset.__new__(cls, args)

    def __getattr__(self, name):
        if name in self:
            return name
        else:
            raise AttributeError("No '%s' in enumeration '%s'"
                                 % (name, self.__class__.__name__))

    def __setattr__(self, name, value):
        raise SyntaxError("Cannot assign enumeration values.")

    def __delattr__(self, name):
        raise SyntaxError("Cannot delete enumeration values.")


## dictionaries with attribute access

class Struct(MutableMapping):
    """
    A `dict`-like object, whose keys can be accessed with the usual
    '[...]' lookup syntax, or with the '.' get attribute syntax.

    Examples::

      >>> a = Struct()
      >>> a['x'] = 1
      >>> a.x
      1
      >>> a.y = 2
      >>> a['y']
      2

    Values can also be initially set by specifying them as keyword
    arguments to the constructor::

      >>> a = Struct(z=3)
      >>> a['z']
      3
      >>> a.z
      3

    Like `dict` instances, `Struct`s have a `copy` method to get a
    shallow copy of the instance:

      >>> b = a.copy()
      >>> b.z
      3

    """

    def __init__(self, initializer=None, **extra_args):
        if initializer is not None:
            try:
                # initializer is `dict`-like?
                for name, value in initializer.items():
                    self[name] = value
            except AttributeError:
                # initializer is a sequence of (name,value) pairs?
                for name, value in initializer:
                    self[name] = value
        for name, value in extra_args.items():
            self[name] = value

    def copy(self):
        """Return a (shallow) copy of this `Struct` instance."""
        return self.__class__(self)

    def __delitem__(self, name):
        del self.__dict__[name]

    def __getitem__(self, name):
        return self.__dict__[name]

    def __setitem__(self, name, val):
        self.__dict__[name] = val

    def __iter__(self):
        return iter(self.__dict__)

    def __len__(self):
        return len(self.__dict__)

    def keys(self):
        return list(self.__dict__.keys())


## decorators

def same_docstring_as(referenced_fn):
    """
    Function decorator: sets the docstring of the following function
    to the one of `referenced_fn`.

    Intended usage is for setting docstrings on methods redefined in
    derived classes, so that they inherit the docstring from the
    corresponding abstract method in the base class.
    """
    def decorate(f):
        f.__doc__ = referenced_fn.__doc__
        return f
    return decorate


## shell quoting

def sh_quote_safe(arg):
    """
    Escape a string for safely passing as argument to a shell command.

    Return a single-quoted string that expands to the exact literal
    contents of `text` when used as an argument to a shell command.
    Examples (note that backslashes are doubled because of Python's
    string read syntax)::

      >>> print(sh_quote_safe("arg"))
      'arg'
      >>> print(sh_quote_safe("'arg'"))
      ''\\''arg'\\'''

    """
    return ("'" + str(arg).replace("'", r"'\''") + "'")


_DQUOTE_RE = re.compile(r'(\\*)"')
"""Regular expression for escaping double quotes in strings."""


def sh_quote_unsafe(arg):
    """
    Double-quote a string for passing as argument to a shell command.

    Return a double-quoted string that expands to the contents of
    `text` but still allows variable expansion and ``\\``-escapes
    processing by the UNIX shell.  Examples (note that backslashes are
    doubled because of Python's string read syntax)::

      >>> print(sh_quote_unsafe("arg"))
      "arg"
      >>> print(sh_quote_unsafe('"arg"'))
      "\\"arg\\""

    """
    return ('"' + _DQUOTE_RE.sub(r'\1\1\"', str(arg)) + '"')


## string conversion

def string_to_boolean(word):
    """
    Convert `word` to a Python boolean value and return it.
    The strings `true`, `yes`, `on`, `1` (with any
    capitalization and any amount of leading and trailing
    spaces) are recognized as meaning Python `True`::

      >>> string_to_boolean('yes')
      True
      >>> string_to_boolean(' 1 ')
      True
      >>> string_to_boolean('On')
      True

    Any other word is considered as boolean `False`::

      >>> string_to_boolean('no')
      False
      >>> string_to_boolean('Nay!')
      False

    Actual booleans are passed through unchanged.
    """
    if isinstance(word, bool):
        return word
    return (word.strip().lower() in ('true', 'yes', 'on', '1'))


def to_str(arg, encoding='utf-8'):
    """
    Convert *arg* to a Python text string.

    Text strings and ``None`` are returned unchanged; byte strings are
    decoded with *encoding* (undecodable bytes are replaced); anything
    else goes through the built-in ``str()``::

      >>> to_str(b'abc')
      'abc'
      >>> to_str(42)
      '42'
      >>> to_str(None) is None
      True
    """
    if arg is None:
        return None
    elif isinstance(arg, str):
        return arg
    elif isinstance(arg, bytes):
        return arg.decode(encoding, 'replace')
    else:
        return str(arg)


def current_username():
    """Return the login name of the user running this process."""
    return getpass.getuser()


## time stamps

def utc_from_epoch(secs):
    """
    Return a timezone-aware UTC `datetime` for the UNIX epoch seconds
    `secs` (an integer or a numeric string).  Return ``None`` if `secs`
    is ``None``, empty or zero (schedulers use 0 for "not yet")::

      >>> utc_from_epoch('86400')
      datetime.datetime(1970, 1, 2, 0, 0, tzinfo=datetime.timezone.utc)
      >>> utc_from_epoch('0') is None
      True
    """
    if secs in (None, ''):
        return None
    secs = int(secs)
    if secs == 0:
        return None
    return datetime.datetime.fromtimestamp(secs, tz=datetime.timezone.utc)


def local_to_utc(timestamp):
    """
    Interpret the naive `datetime` `timestamp` in the local time zone
    and return the corresponding timezone-aware UTC `datetime`.
    """
    if timestamp is None:
        return None
    return timestamp.astimezone(datetime.timezone.utc)


def infer_year(text, fmt, now=None):
    """
    Parse string `text` (which carries no year) according to the
    `strptime` format `fmt` and return a naive local `datetime` with
    the year filled in.

    The current year is assumed; if that places the time stamp in the
    future, the previous year is used instead::

      >>> now = datetime.datetime(2020, 1, 2, 10, 0)
      >>> infer_year('Jan 1 08:00', '%b %d %H:%M', now).year
      2020
      >>> infer_year('Dec 31 23:00', '%b %d %H:%M', now).year
      2019

    A February 29th falls back to the most recent leap year.
    """
    if now is None:
        now = datetime.datetime.now()
    year = now.year
    while year > now.year - 8:
        try:
            candidate = datetime.datetime.strptime(
                '%s %d' % (text, year), fmt + ' %Y')
        except ValueError:
            # Feb 29th in a non-leap year
            year -= 1
            continue
        if candidate <= now:
            return candidate
        year -= 1
    raise ValueError("Cannot parse time stamp '%s' with format '%s'"
                     % (text, fmt))


# main: run tests

if "__main__" == __name__:
    import doctest
    doctest.testmod(name="utils",
                    optionflags=doctest.NORMALIZE_WHITESPACE)
