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

# In-memory model of a cached catalog. Applying events to it one at a time is the
# reference behaviour a coalesced batch has to reproduce, and it doubles as a simple
# apply collaborator for the events processor.

import logging
from copy import deepcopy

from metastore_events.errors import EventClassificationError
from metastore_events.events import EventKind

LOG = logging.getLogger(__name__)


class CachedPartition(object):
  def __init__(self, name, refreshed=False):
    self.name = name
    # Set once the partition's file metadata has been reloaded.
    self.refreshed = refreshed

  def __eq__(self, other):
    return isinstance(other, CachedPartition) and self.name == other.name \
        and self.refreshed == other.refreshed

  def __ne__(self, other):
    return not self == other

  def __repr__(self):
    return 'CachedPartition({0!r}, refreshed={1})'.format(self.name, self.refreshed)


class CachedTable(object):
  def __init__(self, name, refreshed=False):
    self.name = name
    self.refreshed = refreshed
    self.partitions = {}

  def refresh(self):
    self.partitions.clear()
    self.refreshed = True

  def __eq__(self, other):
    return isinstance(other, CachedTable) and self.name == other.name \
        and self.refreshed == other.refreshed and self.partitions == other.partitions

  def __ne__(self, other):
    return not self == other

  def __repr__(self):
    return 'CachedTable({0!r}, refreshed={1}, partitions={2})'.format(
        self.name, self.refreshed, sorted(self.partitions))


class CachedDatabase(object):
  def __init__(self, name):
    self.name = name
    self.tables = {}

  def __eq__(self, other):
    return isinstance(other, CachedDatabase) and self.name == other.name \
        and self.tables == other.tables

  def __ne__(self, other):
    return not self == other

  def __repr__(self):
    return 'CachedDatabase({0!r}, tables={1})'.format(self.name, sorted(self.tables))


class CatalogState(object):
  """Databases, tables and partitions of one catalog as the cache would hold them.

  Events for entities whose parent is not cached are ignored, which is what the
  cache does for objects it never loaded. Two states compare equal when they hold
  the same entities with the same refreshed flags.
  """

  def __init__(self, catalog_name):
    self.catalog_name = catalog_name
    self.databases = {}
    self._handlers = {
        EventKind.CREATE_DATABASE: self._create_database,
        EventKind.DROP_DATABASE: self._drop_database,
        EventKind.ALTER_DATABASE: self._alter_database,
        EventKind.CREATE_TABLE: self._create_table,
        EventKind.DROP_TABLE: self._drop_table,
        EventKind.ALTER_TABLE: self._alter_table,
        EventKind.INSERT: self._alter_table,
        EventKind.ADD_PARTITION: self._add_partitions,
        EventKind.ALTER_PARTITION: self._alter_partitions,
        EventKind.DROP_PARTITION: self._drop_partitions,
    }

  def add_database(self, db_name):
    self.databases[db_name] = CachedDatabase(db_name)
    return self.databases[db_name]

  def add_table(self, db_name, tbl_name, refreshed=False):
    db = self.databases.get(db_name) or self.add_database(db_name)
    db.tables[tbl_name] = CachedTable(tbl_name, refreshed=refreshed)
    return db.tables[tbl_name]

  def add_partition(self, db_name, tbl_name, partition_name, refreshed=False):
    tbl = self.get_table(db_name, tbl_name) or self.add_table(db_name, tbl_name)
    tbl.partitions[partition_name] = CachedPartition(partition_name, refreshed)
    return tbl.partitions[partition_name]

  def get_table(self, db_name, tbl_name):
    db = self.databases.get(db_name)
    if db is None:
      return None
    return db.tables.get(tbl_name)

  def apply(self, event):
    """Applies a single event. Raises EventClassificationError for unknown kinds."""
    handler = self._handlers.get(event.kind)
    if handler is None:
      raise EventClassificationError("Unknown event kind: {0!r}".format(event.kind))
    LOG.debug("Applying %s", event)
    handler(event)
    return event

  def copy(self):
    state = CatalogState(self.catalog_name)
    state.databases = deepcopy(self.databases)
    return state

  def to_dict(self):
    return dict(
        (db.name, dict(
            (tbl.name, {
                'refreshed': tbl.refreshed,
                'partitions': dict((p.name, p.refreshed)
                                   for p in tbl.partitions.values())})
            for tbl in db.tables.values()))
        for db in self.databases.values())

  def __eq__(self, other):
    return isinstance(other, CatalogState) \
        and self.catalog_name == other.catalog_name \
        and self.databases == other.databases

  def __ne__(self, other):
    return not self == other

  def __repr__(self):
    return 'CatalogState({0!r}, {1})'.format(self.catalog_name, self.to_dict())

  def _create_database(self, event):
    self.add_database(event.db_name)

  def _drop_database(self, event):
    self.databases.pop(event.db_name, None)

  def _alter_database(self, event):
    if event.identity_change:
      self.databases.pop(event.db_name, None)
      self.add_database(event.new_name)
    elif event.db_name in self.databases:
      self.databases[event.db_name].tables.clear()

  def _create_table(self, event):
    db = self.databases.get(event.db_name)
    if db is not None:
      db.tables[event.tbl_name] = CachedTable(event.tbl_name)

  def _drop_table(self, event):
    db = self.databases.get(event.db_name)
    if db is not None:
      db.tables.pop(event.tbl_name, None)

  def _alter_table(self, event):
    db = self.databases.get(event.db_name)
    if db is None:
      return
    if event.identity_change:
      db.tables.pop(event.tbl_name, None)
      db.tables[event.new_name] = CachedTable(event.new_name)
    elif event.tbl_name in db.tables:
      db.tables[event.tbl_name].refresh()

  def _add_partitions(self, event):
    tbl = self.get_table(event.db_name, event.tbl_name)
    if tbl is not None:
      for name in event.partition_names:
        tbl.partitions[name] = CachedPartition(name)

  def _alter_partitions(self, event):
    tbl = self.get_table(event.db_name, event.tbl_name)
    if tbl is None:
      return
    if event.identity_change:
      for name in event.partition_names:
        tbl.partitions.pop(name, None)
      tbl.partitions[event.renamed_to] = CachedPartition(event.renamed_to)
    else:
      for name in event.partition_names:
        if name in tbl.partitions:
          tbl.partitions[name].refreshed = True

  def _drop_partitions(self, event):
    tbl = self.get_table(event.db_name, event.tbl_name)
    if tbl is not None:
      for name in event.partition_names:
        tbl.partitions.pop(name, None)


def apply_sequence(state, events):
  """Applies 'events' in order to a copy of 'state' and returns the copy."""
  result = state.copy()
  for event in events:
    result.apply(event)
  return result
