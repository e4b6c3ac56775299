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

# Reduces an ordered batch of metastore events for one catalog to the shortest
# subsequence that leaves the cached catalog in the same state.

import logging
from collections import defaultdict

from metastore_events.errors import EventOrderingError
from metastore_events.events import ScopeLevel, validate_event
from metastore_events.scope import (
    barrier_paths, blocks, in_overwrite_scope, is_barrier, merge_key, overwrite_scope)

LOG = logging.getLogger(__name__)


def validate_batch(catalog_name, events):
  """Raises EventOrderingError unless every event belongs to 'catalog_name' and the
  event ids strictly increase. Malformed records raise InvalidEventError."""
  last_event_id = None
  for event in events:
    validate_event(event)
    if event.catalog_name != catalog_name:
      raise EventOrderingError(
          "Event {0} belongs to catalog {1}, expected {2}".format(
              event.event_id, event.catalog_name, catalog_name))
    if last_event_id is not None and event.event_id <= last_event_id:
      raise EventOrderingError(
          "Events for catalog {0} are not sorted by event id: {1} follows {2}".format(
              catalog_name, event.event_id, last_event_id))
    last_event_id = event.event_id


class _Entry(object):
  __slots__ = ('seq', 'event', 'removed')

  def __init__(self, seq, event):
    self.seq = seq
    self.event = event
    self.removed = False


class EventCoalescer(object):
  """Holds the list of kept events while scanning a batch.

  Kept events are indexed by entity path, so an incoming event only visits the
  entries it could absorb: the ones on its own scope key, plus the tables or
  partitions under it when its rule reaches that far. Barriers live in separate
  per-database, per-table and per-partition lists, registered under both the old
  and the new name. A candidate is only checked against barriers kept after it.
  """

  def __init__(self, catalog_name):
    self.catalog_name = catalog_name
    self._entries = []
    self._num_removed = 0
    # Non-barrier entries, each index maps a key to {seq: entry}.
    self._by_scope = defaultdict(dict)
    self._tables_by_db = defaultdict(dict)
    self._partitions_by_db = defaultdict(dict)
    self._partitions_by_table = defaultdict(dict)
    # Barriers, each index maps a key to a list of (seq, event) in scan order.
    self._db_barriers = defaultdict(list)
    self._table_barriers = defaultdict(list)
    self._partition_barriers = defaultdict(list)

  def add(self, event):
    if event.catalog_name != self.catalog_name:
      raise EventOrderingError("Event {0} belongs to catalog {1}, expected {2}".format(
          event.event_id, event.catalog_name, self.catalog_name))
    tail = self._tail()
    if tail is not None and not is_barrier(event) and not is_barrier(tail.event) \
        and merge_key(tail.event) == merge_key(event):
      # Nothing is kept after the tail, so the tail already absorbed whatever this
      # event would.
      self._replace(tail, event)
      return
    self._absorb(event)
    self._append(event)

  def result(self):
    return [entry.event for entry in self._entries if not entry.removed]

  @property
  def num_removed(self):
    return self._num_removed

  def _tail(self):
    if self._entries and not self._entries[-1].removed:
      return self._entries[-1]
    return None

  def _indexes(self, event):
    """The (index, key) pairs a non-barrier event is kept under."""
    indexes = [(self._by_scope, event.scope_key)]
    level = event.level
    if level == ScopeLevel.TABLE:
      indexes.append((self._tables_by_db, event.db_name))
    elif level == ScopeLevel.PARTITION:
      indexes.append((self._partitions_by_db, event.db_name))
      indexes.append((self._partitions_by_table, (event.db_name, event.tbl_name)))
    return indexes

  def _candidates(self, event, scope):
    """Kept entries that 'event' may absorb, grouped by index bucket."""
    level, scope_key, own, finer = scope
    buckets = [self._by_scope.get(scope_key)]
    if ScopeLevel.TABLE in finer:
      buckets.append(self._tables_by_db.get(event.db_name))
    if ScopeLevel.PARTITION in finer:
      if level == ScopeLevel.DATABASE:
        buckets.append(self._partitions_by_db.get(event.db_name))
      else:
        buckets.append(self._partitions_by_table.get((event.db_name, event.tbl_name)))
    for bucket in buckets:
      if bucket:
        for entry in list(bucket.values()):
          yield entry

  def _barrier_lists(self, event):
    """The barrier lists that can hold a barrier blocking 'event'."""
    lists = [self._db_barriers.get(event.db_name)]
    level = event.level
    if level != ScopeLevel.DATABASE:
      lists.append(self._table_barriers.get((event.db_name, event.tbl_name)))
    if level == ScopeLevel.PARTITION:
      for name in event.partition_names:
        lists.append(self._partition_barriers.get((event.db_name, event.tbl_name, name)))
    return [barriers for barriers in lists if barriers]

  def _is_blocked(self, entry):
    kept = entry.event
    for barriers in self._barrier_lists(kept):
      for seq, barrier in reversed(barriers):
        if seq < entry.seq:
          break
        if blocks(barrier, kept):
          return True
    return False

  def _absorb(self, event):
    scope = overwrite_scope(event)
    for entry in self._candidates(event, scope):
      if entry.removed or not in_overwrite_scope(scope, entry.event):
        continue
      if self._is_blocked(entry):
        continue
      LOG.debug("Catalog %s: event %s absorbed by %s", self.catalog_name, entry.event,
                event)
      self._remove(entry)

  def _append(self, event):
    entry = _Entry(len(self._entries), event)
    self._entries.append(entry)
    if is_barrier(event):
      self._add_barrier(entry)
      return
    for index, key in self._indexes(event):
      index[key][entry.seq] = entry

  def _add_barrier(self, entry):
    barrier = entry.event
    level = barrier.level
    keys = set()
    for path in barrier_paths(barrier):
      if level == ScopeLevel.DATABASE:
        keys.add((self._db_barriers, path.db_name))
      elif level == ScopeLevel.TABLE:
        keys.add((self._table_barriers, (path.db_name, path.tbl_name)))
      else:
        for name in path.partition_names:
          keys.add((self._partition_barriers, (path.db_name, path.tbl_name, name)))
    for index, key in keys:
      index[key].append((entry.seq, barrier))

  def _remove(self, entry):
    entry.removed = True
    self._num_removed += 1
    for index, key in self._indexes(entry.event):
      bucket = index[key]
      del bucket[entry.seq]
      if not bucket:
        del index[key]

  def _replace(self, tail, event):
    LOG.debug("Catalog %s: event %s merged into %s", self.catalog_name, tail.event,
              event)
    tail.event = event
    self._num_removed += 1


def coalesce(catalog_name, events):
  """Returns the ordered subsequence of 'events' that produces the same cached state
  as applying all of them.

  'events' must belong to 'catalog_name' and be sorted by ascending event id,
  otherwise EventOrderingError is raised before anything is coalesced. Identity
  changing events (renames, view conversions) are always kept in place.
  """
  if not events:
    return []
  validate_batch(catalog_name, events)
  coalescer = EventCoalescer(catalog_name)
  for event in events:
    coalescer.add(event)
  result = coalescer.result()
  LOG.debug("Coalesced %d events of catalog %s into %d", len(events), catalog_name,
            len(result))
  return result
