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

# Exceptions raised while validating, coalescing and applying metastore events.


class MetastoreEventError(Exception):
  def __init__(self, value=""):
    self.value = value

  def __str__(self):
    return self.value


class InvalidEventError(MetastoreEventError):
  """Raised when an event record is malformed, e.g. a partition event without
  partition names."""
  pass


class EventClassificationError(MetastoreEventError):
  """Raised for an event kind that has no scope rule. Never recoverable."""
  pass


class EventOrderingError(MetastoreEventError):
  """Raised when a batch is not sorted by event id or mixes catalogs."""
  pass


class EventProcessorPausedError(MetastoreEventError):
  pass


class EventApplyError(MetastoreEventError):
  """Wraps a failure of the apply collaborator for a single event."""
  def __init__(self, event, cause):
    super(EventApplyError, self).__init__(
        "Failed to apply event {0}: {1}".format(event, cause))
    self.event = event
    self.cause = cause


class ConfigFileFormatError(MetastoreEventError):
  """Raised when the config file cannot be read by ConfigParser."""
  pass


class InvalidOptionValueError(MetastoreEventError):
  """Raised when an option contains an invalid value."""
  pass
