#! /usr/bin/env python
#
"""
Deal with `wfbatch` configuration and create batch system objects.

A configuration file defines one batch system per section, like this::

  [batch/cluster]
  type = slurm
  # optional overrides of the command used to query and submit
  sbatch = /opt/slurm/bin/sbatch
  queue_timeout = 60

  [batch/legacy]
  type = lsf
  wrapper = /opt/wfbatch/sbin/lsfwrapper.sh
  enabled = no
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
__docformat__ = 'reStructuredText'


from collections import defaultdict
from collections.abc import Mapping
from configparser import ConfigParser
from configparser import Error as ConfigParserError
import os

import wfbatch
import wfbatch.defaults
import wfbatch.exceptions
from wfbatch.utils import Struct, string_to_boolean


def make_config_parser():
    return ConfigParser(strict=False, interpolation=None,
                        inline_comment_prefixes=('#', ';'))


class Configuration(Struct):

    """
    In-memory representation of the `wfbatch` configuration.

    This class provides facilities for:

    * parsing configuration files (methods `load`:meth: and
      `merge_file`:meth:);
    * parsing a configuration from a python dictionary
      (method `construct_from_cfg_dict`:meth:);
    * instanciating the batch system objects resulting from the
      configuration (methods `make_batch_system`:meth: and
      `make_batch_systems`:meth:).

    The constructor takes a list of files to load (`locations`), a
    python dictionary of sections with key value pairs (`cfg_dict`),
    and a list of *key=value* pairs to provide defaults for the
    configuration.  If `locations` is not empty but there are no
    config files at those locations, the constructor will raise a
    `NoAccessibleConfigurationFile` exception if `cfg_dict` is None.

    Example::

      >>> d = {'batch/cluster': {'type': 'slurm', 'queue_timeout': '60'}}
      >>> cfg = Configuration(cfg_dict=d)
      >>> cfg.batch_systems['cluster']['queue_timeout']
      60
    """

    def __init__(self, *locations, **extra_args):
        # these fields are required
        self.batch_systems = defaultdict(Struct)

        cfg_dict = extra_args.pop('cfg_dict', None)

        # use keyword arguments to set defaults
        self.update(extra_args)

        # save the list of (valid) config files
        self.cfgfiles = []

        if cfg_dict:
            self.construct_from_cfg_dict(cfg_dict)

        # load configuration files if any
        if locations:
            try:
                self.load(*locations)
            except wfbatch.exceptions.NoAccessibleConfigurationFile:
                # a configuration given as a dictionary is good enough
                if cfg_dict is None:
                    raise

        # actual batch system constructor classes
        self._constructors_cache = {}

    def construct_from_cfg_dict(self, cfg_dict, filename=None):
        """
        Merge the settings defined in `cfg_dict` into this configuration.

        Parameter `cfg_dict` may either be a Python dictionary, having
        the same general format as a configuration file, or a
        `ConfigParser` instance into which an INI-format configuration
        file has been read.
        """
        if not isinstance(cfg_dict, Mapping):
            cfg_dict = dict(cfg_dict)
        defaults, batch_systems = self._split(cfg_dict, filename)
        for name, values in batch_systems.items():
            self.batch_systems[name].update(values)
        for name, value in defaults.items():
            if not name.startswith('_'):
                self[name] = value

    def load(self, *locations):
        """
        Merge settings from configuration files into this `Configuration`
        instance.

        Environment variables and `~` references are expanded in the
        location file names.

        If any of the specified files does not exist or cannot be read
        (for whatever reason), a message is logged but the error is
        ignored.  However, a `NoConfigurationFile` exception is raised
        if *none* of the specified locations could be read.

        :raise wfbatch.exceptions.NoConfigurationFile:
            if none of the specified files could be read.
        """
        files_successfully_read = 0
        files_successfully_parsed = 0

        for filename in locations:
            filename = os.path.expandvars(os.path.expanduser(filename))
            if not os.path.exists(filename):
                wfbatch.log.debug(
                    "Configuration.load(): File '%s' does not exist,"
                    " ignoring.", filename)
                continue  # with next `filename`
            if not os.access(filename, os.R_OK):
                wfbatch.log.debug(
                    "Configuration.load(): File '%s' cannot be read,"
                    " ignoring.", filename)
                continue  # with next `filename`

            filename = os.path.abspath(filename)
            self.cfgfiles.append(filename)
            files_successfully_read += 1
            try:
                self.merge_file(filename)
                files_successfully_parsed += 1
            except wfbatch.exceptions.ConfigurationError:
                continue  # with next file

        if files_successfully_read == 0:
            raise wfbatch.exceptions.NoAccessibleConfigurationFile(
                "Could not read any configuration file; tried location '%s'."
                % "', '".join(locations))
        if files_successfully_parsed == 0:
            raise wfbatch.exceptions.NoValidConfigurationFile(
                "Could not parse any configuration file;"
                " tried location(s) '%s' but they all had errors."
                " (Which see in previous log messages.)"
                % "', '".join(locations))

    def merge_file(self, filename):
        """
        Read configuration file `filename` and merge the settings into
        this `Configuration` object.

        Contrary to `load`:meth: (which see), the file name is taken
        literally and an error is raised if the file cannot be read
        for whatever reason.

        :raise wfbatch.exceptions.ConfigurationError: if the
            configuration file is corrupt or has wrong format.
        """
        wfbatch.log.debug(
            "Configuration.merge_file(): Reading file '%s' ...", filename)
        with open(filename, 'r') as stream:
            parser = self._parse(stream, filename)
        self.construct_from_cfg_dict(parser, filename)

    def _parse(self, stream, filename=None):
        parser = make_config_parser()
        try:
            parser.read_file(stream, filename)
        except ConfigParserError as err:
            if filename is None:
                filename = getattr(stream, 'name', repr(stream))
            raise wfbatch.exceptions.ConfigurationError(
                "Configuration file `%s` is unreadable or malformed: %s: %s"
                % (filename, err.__class__.__name__, err))
        return parser

    # type conversions for known batch system keys; any other key is
    # passed to the batch system constructor as a string
    _convert = {
        'enabled': string_to_boolean,
        'queue_timeout': int,
        'acct_timeout': int,
        'deep_acct_timeout': int,
        'submit_timeout': int,
        'delete_timeout': int,
        'tracejob_days': int,
    }

    # keys required in every `[batch/*]` section
    _batch_required_keys = ('type',)

    def _split(self, cfg_dict, filename=None):
        """
        Iterate through `cfg_dict` and return a `(defaults, batch_systems)`
        pair.

        * `defaults`: a dictionary containing keys found in the
          ``[DEFAULT]`` section of the configuration file (if any);

        * `batch_systems`: a dictionary mapping batch system names
          into a dictionary of key/value attributes contained in the
          configuration file under the ``[batch/name]`` heading.
        """
        defaults = dict()
        batch_systems = defaultdict(dict)

        if 'DEFAULT' in cfg_dict:
            defaults.update(cfg_dict['DEFAULT'])

        for sectname in cfg_dict:
            if sectname.startswith('batch/'):
                name = sectname.split('/', 1)[1]
                wfbatch.log.debug(
                    "Config._split(): Read configuration stanza"
                    " for batch system '%s'.", name)

                # make sure defaults are merged in
                config_items = defaults.copy()
                config_items.update(dict(cfg_dict[sectname].items()))

                for key, conv in self._convert.items():
                    if key in config_items:
                        try:
                            config_items[key] = conv(config_items[key])
                        except (TypeError, ValueError) as err:
                            raise wfbatch.exceptions.ConfigurationError(
                                "Incorrect value for key `%s` of batch system"
                                " '%s' in configuration file '%s': %s"
                                % (key, name, filename, err))

                for key in self._batch_required_keys:
                    if not config_items.get(key):
                        raise wfbatch.exceptions.ConfigurationError(
                            "Missing mandatory configuration key `{key}`"
                            " in section [{sectname}]"
                            " of the configuration file `{filename}`."
                            .format(key=key, sectname=sectname,
                                    filename=filename))

                batch_systems[name].update(config_items)
                batch_systems[name]['name'] = name

            elif sectname != 'DEFAULT':
                wfbatch.log.warning(
                    "Config._split(): unknown configuration section '%s'"
                    " -- ignoring!", sectname)

        return (defaults, batch_systems)

    # map batch system type name (e.g., 'lsf') to module name +
    # class within that module
    TYPE_CONSTRUCTOR_MAP = {
        wfbatch.defaults.LSF_BATCH:
            ("wfbatch.backends.lsf", "LsfBatchSystem"),
        wfbatch.defaults.MOABTORQUE_BATCH:
            ("wfbatch.backends.moab", "MoabTorqueBatchSystem"),
        wfbatch.defaults.TORQUE_BATCH:
            ("wfbatch.backends.torque", "TorqueBatchSystem"),
        wfbatch.defaults.SLURM_BATCH:
            ("wfbatch.backends.slurm", "SlurmBatchSystem"),
    }

    def _get_constructor(self, batch_type):
        """
        Return the class to be used to instanciate batch systems of
        the given type name.
        """
        if batch_type not in self._constructors_cache:
            if batch_type not in self.TYPE_CONSTRUCTOR_MAP:
                raise wfbatch.exceptions.UnknownBatchSystem(
                    "Unknown batch system type '%s'" % batch_type)
            modname, clsname = self.TYPE_CONSTRUCTOR_MAP[batch_type]
            mod = __import__(modname, globals(), locals(), [clsname], 0)
            cls = getattr(mod, clsname)
            wfbatch.log.debug(
                "Using class %r from module %r"
                " to instanciate batch systems of type %s",
                cls, mod, batch_type)
            self._constructors_cache[batch_type] = cls
        return self._constructors_cache[batch_type]

    def make_batch_system(self, name, **extra_args):
        """
        Return the batch system object configured in section
        ``[batch/NAME]``, or ``None`` if that batch system has been
        disabled with ``enabled = no``.

        Any keyword argument overrides the corresponding configuration
        key (e.g., ``transport=...``).
        """
        if name not in self.batch_systems:
            raise wfbatch.exceptions.ConfigurationError(
                "No batch system named '%s' in the configuration" % name)
        args = dict(self.batch_systems[name])
        args.update(extra_args)
        if not args.get('enabled', True):
            wfbatch.log.info(
                "Ignoring batch system '%s'"
                " because of 'enabled=False' setting in configuration file.",
                name)
            return None
        cls = self._get_constructor(args.pop('type'))
        return cls(**args)

    def make_batch_systems(self, ignore_errors=True, **extra_args):
        """
        Make batch system objects corresponding to all enabled
        ``[batch/*]`` sections.

        Return a dictionary, mapping the batch system name (string)
        into the corresponding object.

        By default, errors in constructing a batch system (e.g., due
        to a bad configuration) are logged and the offending
        configuration is dropped.  This can be changed by setting the
        optional argument `ignore_errors` to `False`: in this case,
        the exception is raised.
        """
        result = {}
        for name in list(self.batch_systems):
            try:
                batch = self.make_batch_system(name, **extra_args)
            except wfbatch.exceptions.Error as err:
                wfbatch.log.warning(
                    "Failed creating batch system '%s': %s: %s",
                    name, err.__class__.__name__, err)
                if ignore_errors:
                    continue
                raise
            if batch is not None:
                result[name] = batch
        return result
