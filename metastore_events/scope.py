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

# Scope and classification rules used by the coalescer. For every event kind these
# decide which earlier events become irrelevant once the event is applied, and which
# identity-changing events (barriers) stop such absorption from crossing them.
#
# Absorbing an earlier event 'k' into a later event 'e' is only valid when the cached
# state of everything 'k' touched is fully determined by 'e'. "Destructive" events
# (create, drop, add partition, drop partition) replace their entity outright and
# absorb anything on it. "Refresh" events (non-rename alters, inserts) only update an
# entity that already exists, so at their own level they absorb nothing but earlier
# refreshes; a creation or a drop before them still decides whether the entity exists.

from metastore_events.errors import EventClassificationError
from metastore_events.events import EventKind, ScopeLevel, get_scope_level

# What an event overwrites, independent of whether it is a barrier.
#   own:   which earlier events at the event's own level and scope are absorbed,
#          'all' or 'refresh' (non-barrier events of the same refresh kinds).
#   finer: which finer levels under the event's scope are absorbed.
_REFRESH_KINDS = {
    ScopeLevel.DATABASE: frozenset([EventKind.ALTER_DATABASE]),
    ScopeLevel.TABLE: frozenset([EventKind.ALTER_TABLE, EventKind.INSERT]),
    ScopeLevel.PARTITION: frozenset([EventKind.ALTER_PARTITION]),
}

ALL = 'all'
REFRESH = 'refresh'

OVERWRITE_RULES = {
    EventKind.CREATE_DATABASE: (ALL, (ScopeLevel.TABLE, ScopeLevel.PARTITION)),
    EventKind.DROP_DATABASE: (ALL, (ScopeLevel.TABLE, ScopeLevel.PARTITION)),
    # Clearing a database reloads its tables. Partition events under it are left in
    # place, they are harmless and cheap compared to the table loads.
    EventKind.ALTER_DATABASE: (REFRESH, (ScopeLevel.TABLE,)),
    EventKind.CREATE_TABLE: (ALL, (ScopeLevel.PARTITION,)),
    EventKind.DROP_TABLE: (ALL, (ScopeLevel.PARTITION,)),
    EventKind.ALTER_TABLE: (REFRESH, (ScopeLevel.PARTITION,)),
    EventKind.INSERT: (REFRESH, (ScopeLevel.PARTITION,)),
    EventKind.ADD_PARTITION: (ALL, ()),
    EventKind.ALTER_PARTITION: (REFRESH, ()),
    EventKind.DROP_PARTITION: (ALL, ()),
}

# What a barrier absorbs on its own entity path before the rename makes the old name
# unreachable. A database rename only takes database level events with it.
BARRIER_RULES = {
    EventKind.ALTER_DATABASE: (ALL, ()),
    EventKind.ALTER_TABLE: (ALL, (ScopeLevel.PARTITION,)),
    EventKind.ALTER_PARTITION: (ALL, ()),
}

for _rules, _kinds in ((OVERWRITE_RULES, set(EventKind)),
                     (BARRIER_RULES, {EventKind.ALTER_DATABASE, EventKind.ALTER_TABLE,
                                      EventKind.ALTER_PARTITION})):
  if set(_rules) != _kinds:
    raise EventClassificationError("Scope rules do not cover event kinds: {0}".format(
        sorted(k.value for k in _kinds.symmetric_difference(_rules))))


def is_barrier(event):
  return event.identity_change


def _get_rule(event):
  rules = BARRIER_RULES if is_barrier(event) else OVERWRITE_RULES
  try:
    return rules[event.kind]
  except (KeyError, TypeError):
    raise EventClassificationError("Unknown event kind: {0!r}".format(event.kind))


def overwrite_scope(event):
  """Returns (level, scope key, own-level mode, absorbed finer levels) describing the
  prior history 'event' makes irrelevant. For barriers this is the entity path
  they absorb on."""
  own, finer = _get_rule(event)
  return get_scope_level(event.kind), event.scope_key, own, finer


def _on_path(level, scope_key, event):
  """True if 'event' targets the entity at 'scope_key' (of 'level') or something
  under it. Partition sets only match exactly."""
  if event.db_name != scope_key.db_name:
    return False
  if level == ScopeLevel.DATABASE:
    return True
  if event.tbl_name != scope_key.tbl_name:
    return False
  if level == ScopeLevel.TABLE:
    return True
  return event.partition_names == scope_key.partition_names


def absorbs(event, earlier):
  """True if applying 'event' makes the effect of 'earlier' irrelevant, ignoring any
  barriers between them. Barriers are never absorbed."""
  return in_overwrite_scope(overwrite_scope(event), earlier)


def in_overwrite_scope(scope, earlier):
  """Same as absorbs(), for a 'scope' already computed by overwrite_scope()."""
  if is_barrier(earlier):
    return False
  level, scope_key, own, finer = scope
  if earlier.catalog_name != scope_key.catalog_name:
    return False
  if not _on_path(level, scope_key, earlier):
    return False
  earlier_level = earlier.level
  if earlier_level == level:
    return own == ALL or earlier.kind in _REFRESH_KINDS[level]
  return earlier_level in finer


def barrier_paths(barrier):
  """The entity paths a barrier sits on: the old name and the new one."""
  paths = [barrier.scope_key]
  key = barrier.scope_key
  new_name = barrier.renamed_to
  if new_name is not None:
    level = barrier.level
    if level == ScopeLevel.DATABASE:
      paths.append(key._replace(db_name=new_name))
    elif level == ScopeLevel.TABLE:
      paths.append(key._replace(tbl_name=new_name))
    else:
      paths.append(key._replace(partition_names=frozenset([new_name])))
  return paths


def blocks(barrier, earlier):
  """True if 'barrier', positioned between 'earlier' and a later event, forbids that
  later event from absorbing 'earlier'. A barrier blocks events on its own entity
  path at the same or a finer level."""
  if earlier.catalog_name != barrier.catalog_name:
    return False
  level = barrier.level
  if earlier.level.value < level.value:
    return False
  for path in barrier_paths(barrier):
    if earlier.db_name != path.db_name:
      continue
    if level == ScopeLevel.DATABASE:
      return True
    if earlier.tbl_name != path.tbl_name:
      continue
    if level == ScopeLevel.TABLE:
      return True
    if earlier.partition_names & path.partition_names:
      return True
  return False


def merge_key(event):
  """Key under which consecutive non-barrier events collapse into the latest one."""
  return event.kind, event.scope_key
