# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.

# Options of the events processor. Defaults live in 'processor_defaults'; they can be
# overridden by a config file and by environment variables.
#
# Example config file:
#
# [metastore_events]
# coalesce_events=true
# max_events_per_batch=5000
# num_threads=8

import logging
import os

from configparser import ConfigParser

from metastore_events.errors import ConfigFileFormatError, InvalidOptionValueError

LOG = logging.getLogger(__name__)

CONFIG_SECTION = 'metastore_events'
CONFIG_FILE_ENV_VAR = 'METASTORE_EVENTS_CONFIG'
ENV_VAR_PREFIX = 'METASTORE_EVENTS_'

processor_defaults = {
    # Set to false to apply every event as received.
    'coalesce_events': True,
    'max_events_per_batch': 10000,
    'num_threads': 4,
    'log_level': 'INFO',
}


def parse_bool_option(value):
  """Returns True for '1' and 'True', and False for '0' and 'False'.
     Throws InvalidOptionValueError for other values.
  """
  if value.lower() in ["true", "1"]:
    return True
  elif value.lower() in ["false", "0"]:
    return False
  else:
    raise InvalidOptionValueError("'" + value + "' is not a valid value for a boolean "
                                  "option.")


def parse_options(options, defaults=processor_defaults):
  """Filters unknown options and converts values from string to the type of the
  option's default. 'options' is a list of (name, value) pairs.

  Returns a dictionary with option names as keys and option values as values.
  """
  result = {}
  for option, value in options:
    if option not in defaults:
      LOG.warning("Ignoring unrecognized config option: '%s'", option)
      continue
    default = defaults[option]
    if isinstance(default, bool):
      result[option] = parse_bool_option(value)
    elif isinstance(default, int):
      try:
        result[option] = int(value)
      except ValueError:
        raise InvalidOptionValueError(
            "'{0}' is not a valid value for integer option '{1}'".format(value, option))
    else:
      result[option] = value
  return result


def get_config_from_file(config_filename):
  """Reads the [metastore_events] section of a config file and returns the parsed
  options. Returns an empty dict if the file or the section does not exist."""
  config = ConfigParser(strict=False)
  # Preserve case-sensitivity since option names are case sensitive.
  config.optionxform = str
  try:
    config.read(config_filename)
  except Exception as e:
    raise ConfigFileFormatError(
        "Unable to read configuration file correctly. Check formatting: %s" % e)
  if not config.has_section(CONFIG_SECTION):
    return {}
  return parse_options(config.items(CONFIG_SECTION))


def get_config_from_env(environ=None):
  """Collects METASTORE_EVENTS_<OPTION> overrides from the environment."""
  environ = os.environ if environ is None else environ
  options = []
  for option in processor_defaults:
    value = environ.get(ENV_VAR_PREFIX + option.upper())
    if value is not None:
      options.append((option, value))
  return parse_options(options)


class ProcessorConfig(object):
  """Resolved options of the events processor."""

  def __init__(self, **options):
    unknown = set(options) - set(processor_defaults)
    if unknown:
      raise InvalidOptionValueError(
          "Unknown options: {0}".format(', '.join(sorted(unknown))))
    values = dict(processor_defaults)
    values.update(options)
    self.coalesce_events = values['coalesce_events']
    self.max_events_per_batch = values['max_events_per_batch']
    self.num_threads = values['num_threads']
    self.log_level = values['log_level']
    self.validate()

  def validate(self):
    if self.max_events_per_batch < 1:
      raise InvalidOptionValueError(
          "max_events_per_batch must be positive: {0}".format(self.max_events_per_batch))
    if self.num_threads < 1:
      raise InvalidOptionValueError(
          "num_threads must be positive: {0}".format(self.num_threads))
    if self.log_level not in ('DEBUG', 'INFO', 'WARN', 'WARNING', 'ERROR'):
      raise InvalidOptionValueError("Invalid log level: {0}".format(self.log_level))

  def as_dict(self):
    return dict((option, getattr(self, option)) for option in processor_defaults)

  def __repr__(self):
    return 'ProcessorConfig({0})'.format(', '.join(
        '{0}={1!r}'.format(k, v) for k, v in sorted(self.as_dict().items())))


def load_config(config_filename=None, environ=None):
  """Resolves the processor options. Precedence, lowest first: defaults, the config
  file ('config_filename' or $METASTORE_EVENTS_CONFIG), environment variables."""
  environ = os.environ if environ is None else environ
  options = {}
  config_filename = config_filename or environ.get(CONFIG_FILE_ENV_VAR)
  if config_filename:
    if not os.path.isfile(config_filename):
      raise ConfigFileFormatError(
          "Configuration file does not exist: {0}".format(config_filename))
    options.update(get_config_from_file(config_filename))
  options.update(get_config_from_env(environ))
  return ProcessorConfig(**options)
