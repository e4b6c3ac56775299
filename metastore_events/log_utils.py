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

# Log setup for processes that host the events processor. Only the package logger
# is configured, so an embedding application keeps control of the root logger.

import logging
import sys

LOG_FORMAT = "%(asctime)s {thread}%(levelname)s:%(module)s[%(lineno)s]:%(message)s"
PACKAGE_LOGGER = 'metastore_events'
CONSOLE_HANDLER = 'metastore_events_console'
FILE_HANDLER = 'metastore_events_file'


def configure_logging(log_level, debug_log_file=None, log_thread_name=False):
  """Sends package log records of 'log_level' and above to stdout and, if
  'debug_log_file' is given, everything down to DEBUG to that file.

  Handlers installed by an earlier call are replaced, so reconfiguring never
  duplicates output. Returns the package logger.
  """
  logger = logging.getLogger(PACKAGE_LOGGER)
  logger.setLevel(logging.DEBUG if debug_log_file else getattr(logging, log_level))
  for handler in list(logger.handlers):
    if handler.name in (CONSOLE_HANDLER, FILE_HANDLER):
      logger.removeHandler(handler)
      handler.close()
  formatter = logging.Formatter(
      LOG_FORMAT.format(thread="%(threadName)s " if log_thread_name else ""))

  console_handler = logging.StreamHandler(sys.stdout)
  console_handler.name = CONSOLE_HANDLER
  console_handler.setLevel(getattr(logging, log_level))
  console_handler.setFormatter(formatter)
  logger.addHandler(console_handler)

  if debug_log_file:
    file_handler = logging.FileHandler(debug_log_file)
    file_handler.name = FILE_HANDLER
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
  return logger
