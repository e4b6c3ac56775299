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

# Typed records for the metastore notification events consumed by the events
# processor. The records are immutable; translating raw notifications into them
# happens upstream.

from collections import namedtuple
from enum import Enum

from metastore_events.errors import EventClassificationError, InvalidEventError


class EventKind(Enum):
  """The notification types the processor understands. The values match the HMS
  notification event type strings."""
  CREATE_DATABASE = 'CREATE_DATABASE'
  DROP_DATABASE = 'DROP_DATABASE'
  ALTER_DATABASE = 'ALTER_DATABASE'
  CREATE_TABLE = 'CREATE_TABLE'
  DROP_TABLE = 'DROP_TABLE'
  ALTER_TABLE = 'ALTER_TABLE'
  INSERT = 'INSERT'
  ADD_PARTITION = 'ADD_PARTITION'
  ALTER_PARTITION = 'ALTER_PARTITION'
  DROP_PARTITION = 'DROP_PARTITION'


class ScopeLevel(Enum):
  DATABASE = 1
  TABLE = 2
  PARTITION = 3


# The finest scope each kind targets.
KIND_LEVELS = {
    EventKind.CREATE_DATABASE: ScopeLevel.DATABASE,
    EventKind.DROP_DATABASE: ScopeLevel.DATABASE,
    EventKind.ALTER_DATABASE: ScopeLevel.DATABASE,
    EventKind.CREATE_TABLE: ScopeLevel.TABLE,
    EventKind.DROP_TABLE: ScopeLevel.TABLE,
    EventKind.ALTER_TABLE: ScopeLevel.TABLE,
    EventKind.INSERT: ScopeLevel.TABLE,
    EventKind.ADD_PARTITION: ScopeLevel.PARTITION,
    EventKind.ALTER_PARTITION: ScopeLevel.PARTITION,
    EventKind.DROP_PARTITION: ScopeLevel.PARTITION,
}

IDENTITY_CHANGING_KINDS = frozenset([
    EventKind.ALTER_DATABASE, EventKind.ALTER_TABLE, EventKind.ALTER_PARTITION])

DROP_KINDS = frozenset([
    EventKind.DROP_DATABASE, EventKind.DROP_TABLE, EventKind.DROP_PARTITION])

_missing_levels = set(EventKind) - set(KIND_LEVELS)
if _missing_levels:
  raise EventClassificationError(
      "No scope level defined for event kinds: {0}".format(
          sorted(k.value for k in _missing_levels)))


def get_scope_level(kind):
  try:
    return KIND_LEVELS[kind]
  except (KeyError, TypeError):
    raise EventClassificationError("Unknown event kind: {0!r}".format(kind))


ScopeKey = namedtuple('ScopeKey', ['catalog_name', 'db_name', 'tbl_name',
                                   'partition_names'])


_EVENT_FIELDS = ['event_id', 'catalog_name', 'db_name', 'tbl_name', 'partition_names',
                 'kind', 'identity_change', 'renamed_to', 'is_view_change']


class MetastoreEvent(namedtuple('MetastoreEvent', _EVENT_FIELDS)):
  """A single change notification for a database, table or partition.

  'partition_names' is a frozenset, empty for database and table events. For a
  partition rename it holds the old names and 'renamed_to' the new one.
  'identity_change' is set for renames and for table/view conversions; such events
  are barriers for coalescing. Use the *_event() helpers below rather than building
  records by hand, they validate the field combinations.
  """
  __slots__ = ()

  @property
  def level(self):
    return get_scope_level(self.kind)

  @property
  def scope_key(self):
    """The finest scope this event targets."""
    level = self.level
    return ScopeKey(self.catalog_name, self.db_name,
                    self.tbl_name if level != ScopeLevel.DATABASE else None,
                    self.partition_names if level == ScopeLevel.PARTITION
                    else frozenset())

  @property
  def is_rename(self):
    return self.identity_change and not self.is_view_change

  @property
  def is_drop(self):
    return self.kind in DROP_KINDS

  @property
  def is_full_refresh(self):
    """True for database and table level events after which the cached entity is
    reloaded or discarded wholesale."""
    if self.identity_change:
      return False
    return self.kind in (EventKind.ALTER_DATABASE, EventKind.DROP_DATABASE,
                         EventKind.ALTER_TABLE, EventKind.INSERT, EventKind.DROP_TABLE)

  @property
  def new_name(self):
    """The name of the entity after this event is applied."""
    if self.renamed_to is not None:
      return self.renamed_to
    level = self.level
    if level == ScopeLevel.DATABASE:
      return self.db_name
    elif level == ScopeLevel.TABLE:
      return self.tbl_name
    return None

  def full_name(self):
    name = '{0}.{1}'.format(self.catalog_name, self.db_name)
    if self.tbl_name is not None:
      name += '.' + self.tbl_name
    if self.partition_names:
      name += '/[' + ','.join(sorted(self.partition_names)) + ']'
    return name

  def __str__(self):
    desc = '{0}({1}, {2})'.format(self.kind.name, self.event_id, self.full_name())
    if self.identity_change:
      desc += ' -> {0}'.format(self.renamed_to if self.renamed_to else '<view change>')
    return desc


def validate_event(event):
  """Checks the field combinations of 'event' and returns it. Raises
  EventClassificationError for unknown kinds and InvalidEventError otherwise."""
  level = get_scope_level(event.kind)
  if not isinstance(event.event_id, int) or isinstance(event.event_id, bool):
    raise InvalidEventError("Event id must be an integer: {0!r}".format(event.event_id))
  if not event.catalog_name or not event.db_name:
    raise InvalidEventError(
        "Event {0} must name a catalog and a database".format(event.event_id))
  if level == ScopeLevel.DATABASE and event.tbl_name is not None:
    raise InvalidEventError(
        "{0} event {1} must not name a table".format(event.kind.name, event.event_id))
  if level != ScopeLevel.DATABASE and not event.tbl_name:
    raise InvalidEventError(
        "{0} event {1} must name a table".format(event.kind.name, event.event_id))
  if level == ScopeLevel.PARTITION and not event.partition_names:
    raise InvalidEventError("{0} event {1} must name at least one partition".format(
        event.kind.name, event.event_id))
  if level != ScopeLevel.PARTITION and event.partition_names:
    raise InvalidEventError("{0} event {1} must not name partitions".format(
        event.kind.name, event.event_id))
  if event.identity_change and event.kind not in IDENTITY_CHANGING_KINDS:
    raise InvalidEventError("{0} event {1} cannot change an identity".format(
        event.kind.name, event.event_id))
  if event.is_view_change and event.kind != EventKind.ALTER_TABLE:
    raise InvalidEventError("Only ALTER_TABLE events can convert views, got {0}".format(
        event))
  if event.is_view_change and not event.identity_change:
    raise InvalidEventError(
        "View change event {0} must be an identity change".format(event.event_id))
  if event.renamed_to is not None and not event.identity_change:
    raise InvalidEventError(
        "Event {0} has a new name but is not a rename".format(event.event_id))
  if event.is_rename and not event.renamed_to:
    raise InvalidEventError(
        "Rename event {0} must carry the new name".format(event.event_id))
  return event


def make_event(event_id, catalog_name, db_name, kind, tbl_name=None,
               partition_names=None, identity_change=False, renamed_to=None,
               is_view_change=False):
  """Builds and validates a MetastoreEvent."""
  if isinstance(partition_names, str):
    partition_names = [partition_names]
  event = MetastoreEvent(event_id, catalog_name, db_name, tbl_name,
                         frozenset(partition_names or ()), kind,
                         bool(identity_change), renamed_to, bool(is_view_change))
  return validate_event(event)


def create_database_event(event_id, catalog_name, db_name):
  return make_event(event_id, catalog_name, db_name, EventKind.CREATE_DATABASE)


def drop_database_event(event_id, catalog_name, db_name):
  return make_event(event_id, catalog_name, db_name, EventKind.DROP_DATABASE)


def alter_database_event(event_id, catalog_name, db_name, rename_to=None):
  return make_event(event_id, catalog_name, db_name, EventKind.ALTER_DATABASE,
                    identity_change=rename_to is not None, renamed_to=rename_to)


def create_table_event(event_id, catalog_name, db_name, tbl_name):
  return make_event(event_id, catalog_name, db_name, EventKind.CREATE_TABLE,
                    tbl_name=tbl_name)


def drop_table_event(event_id, catalog_name, db_name, tbl_name):
  return make_event(event_id, catalog_name, db_name, EventKind.DROP_TABLE,
                    tbl_name=tbl_name)


def alter_table_event(event_id, catalog_name, db_name, tbl_name, rename_to=None,
                      is_view=False):
  """A rename passes 'rename_to'; a conversion between table and view passes
  is_view=True, optionally together with a new name."""
  return make_event(event_id, catalog_name, db_name, EventKind.ALTER_TABLE,
                    tbl_name=tbl_name,
                    identity_change=rename_to is not None or is_view,
                    renamed_to=rename_to, is_view_change=is_view)


def insert_event(event_id, catalog_name, db_name, tbl_name):
  return make_event(event_id, catalog_name, db_name, EventKind.INSERT,
                    tbl_name=tbl_name)


def add_partition_event(event_id, catalog_name, db_name, tbl_name, partition_names):
  return make_event(event_id, catalog_name, db_name, EventKind.ADD_PARTITION,
                    tbl_name=tbl_name, partition_names=partition_names)


def alter_partition_event(event_id, catalog_name, db_name, tbl_name, partition_name,
                          rename_to=None):
  return make_event(event_id, catalog_name, db_name, EventKind.ALTER_PARTITION,
                    tbl_name=tbl_name, partition_names=partition_name,
                    identity_change=rename_to is not None, renamed_to=rename_to)


def drop_partition_event(event_id, catalog_name, db_name, tbl_name, partition_names):
  return make_event(event_id, catalog_name, db_name, EventKind.DROP_PARTITION,
                    tbl_name=tbl_name, partition_names=partition_names)
