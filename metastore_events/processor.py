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

# Drives coalesce-and-apply cycles over batches of metastore events. Events are
# grouped by catalog; each catalog's batch is coalesced and the survivors are handed
# to an apply collaborator one at a time. Cycles for one catalog are serialized,
# different catalogs run in parallel.

import logging
import multiprocessing.pool
import threading
from collections import OrderedDict

from metastore_events.coalescer import coalesce, validate_batch
from metastore_events.config import ProcessorConfig, load_config
from metastore_events.errors import EventApplyError, EventProcessorPausedError
from metastore_events.log_utils import configure_logging

LOG = logging.getLogger(__name__)


class EventProcessorStatus(object):
  ACTIVE = 'ACTIVE'
  PAUSED = 'PAUSED'
  ERROR = 'ERROR'


class SyncResult(object):
  """Outcome of one coalesce-and-apply cycle for a catalog.

  'last_synced_event_id' is the id of the last event the apply collaborator accepted
  in this cycle, or the resume point from earlier cycles if nothing was applied. A
  caller resumes from it on the next poll; re-delivering events after it is safe.
  """

  def __init__(self, catalog_name, num_received=0):
    self.catalog_name = catalog_name
    self.num_received = num_received
    self.applied = []
    self.skipped = 0
    self.last_synced_event_id = None
    self.failed_event = None
    self.error = None
    self.cancelled = False

  @property
  def succeeded(self):
    return self.error is None and not self.cancelled

  def __repr__(self):
    return ('SyncResult(catalog={0}, received={1}, applied={2}, skipped={3}, '
            'last_synced_event_id={4}, failed_event={5}, cancelled={6})').format(
                self.catalog_name, self.num_received, len(self.applied), self.skipped,
                self.last_synced_event_id, self.failed_event, self.cancelled)


class BatchResult(object):
  """Per-catalog SyncResults of a multi-catalog batch, in catalog order."""

  def __init__(self, results):
    self.results = OrderedDict((r.catalog_name, r) for r in results)

  @property
  def succeeded(self):
    return all(r.succeeded for r in self.results.values())

  @property
  def failed_catalogs(self):
    return [name for name, r in self.results.items() if not r.succeeded]

  @property
  def last_synced_event_ids(self):
    return OrderedDict(
        (name, r.last_synced_event_id) for name, r in self.results.items())

  @property
  def applied(self):
    """All applied events, grouped by catalog."""
    return [e for r in self.results.values() for e in r.applied]

  def __getitem__(self, catalog_name):
    return self.results[catalog_name]

  def __repr__(self):
    return 'BatchResult({0})'.format(list(self.results.values()))


def group_by_catalog(events):
  """Splits 'events' by catalog name, keeping the relative order of each catalog's
  events. Catalogs appear in the order they are first seen."""
  groups = OrderedDict()
  for event in events:
    groups.setdefault(event.catalog_name, []).append(event)
  return groups


class MetastoreEventsProcessor(object):
  """Coalesces batches of metastore events and applies them to the catalog cache.

  'applier' is the apply collaborator: any object with an apply(event) method that
  raises on failure. Applying is expected to be idempotent when replayed in order.
  """

  def __init__(self, applier, config=None):
    self.applier = applier
    self.config = config or ProcessorConfig()
    # Guards everything below except the per-catalog cycles themselves.
    self._lock = threading.Lock()
    self._catalog_locks = {}
    self._last_synced_event_ids = {}
    self._failed_catalogs = set()
    self._paused = False
    self._error_msg = None
    self._events_received = 0
    self._events_skipped = 0
    self._events_applied = 0
    self._batches_processed = 0

  @classmethod
  def from_config(cls, applier, config_filename=None, environ=None, debug_log_file=None):
    """Builds a processor from load_config() and sets up the package logging at the
    configured log_level. Thread names are logged when catalogs sync in parallel."""
    config = load_config(config_filename, environ)
    configure_logging(config.log_level, debug_log_file=debug_log_file,
                      log_thread_name=config.num_threads > 1)
    LOG.info("Starting events processor with %r", config)
    return cls(applier, config)

  def process_batch(self, catalog_name, events):
    """Validates and coalesces one catalog's events and returns the events to apply.
    Nothing is applied."""
    events = list(events)
    if not self.config.coalesce_events:
      validate_batch(catalog_name, events)
      return events
    return coalesce(catalog_name, events)

  def sync_catalog(self, catalog_name, events, cancel_event=None):
    """Runs one coalesce-and-apply cycle for 'catalog_name' and returns a SyncResult.

    Ordering and classification errors are raised before anything is applied. An
    apply failure stops the cycle and is reported in the result; it is never retried
    here. If 'cancel_event' (a threading.Event) gets set, the cycle stops before the
    next apply, so the cache always reflects a prefix of the coalesced events.
    """
    events = list(events)
    if self.is_paused():
      raise EventProcessorPausedError(
          "Events processor is paused, not syncing catalog {0}".format(catalog_name))
    validate_batch(catalog_name, events)
    result = SyncResult(catalog_name, num_received=len(events))
    with self._get_catalog_lock(catalog_name):
      result.last_synced_event_id = self.last_synced_event_id(catalog_name)
      LOG.info("Syncing %d events for catalog %s", len(events), catalog_name)
      batch_size = self.config.max_events_per_batch
      for start in range(0, len(events), batch_size):
        chunk = events[start:start + batch_size]
        batch = self.process_batch(catalog_name, chunk)
        result.skipped += len(chunk) - len(batch)
        if not self._apply_batch(result, batch, cancel_event):
          break
    self._record_result(result)
    if result.error is not None:
      LOG.error("Sync of catalog %s stopped at event %s, last synced event id %s: %s",
                catalog_name, result.failed_event, result.last_synced_event_id,
                result.error)
    elif result.cancelled:
      LOG.info("Sync of catalog %s cancelled, last synced event id %s", catalog_name,
               result.last_synced_event_id)
    else:
      LOG.info("Synced catalog %s: applied %d events, skipped %d", catalog_name,
               len(result.applied), result.skipped)
    return result

  def process_all(self, events, cancel_event=None):
    """Runs a cycle for every catalog in 'events', either a flat list of events or a
    mapping of catalog name to that catalog's ordered events. Catalogs are synced in
    parallel on up to 'num_threads' threads. Returns a BatchResult."""
    if isinstance(events, dict):
      groups = OrderedDict(events)
    else:
      groups = group_by_catalog(events)
    if not groups:
      return BatchResult([])
    # Reject bad input for any catalog before touching the cache.
    for catalog_name, catalog_events in groups.items():
      validate_batch(catalog_name, catalog_events)
    if len(groups) == 1:
      catalog_name, catalog_events = next(iter(groups.items()))
      return BatchResult([self.sync_catalog(catalog_name, catalog_events, cancel_event)])
    pool = multiprocessing.pool.ThreadPool(
        processes=min(self.config.num_threads, len(groups)))
    try:
      futures = [pool.apply_async(self.sync_catalog, (name, catalog_events, cancel_event))
                 for name, catalog_events in groups.items()]
      return BatchResult([f.get() for f in futures])
    finally:
      pool.close()
      pool.join()

  def filter_new_events(self, catalog_name, events):
    """Drops events that were already applied for 'catalog_name'."""
    last_synced = self.last_synced_event_id(catalog_name)
    if last_synced is None:
      return list(events)
    return [e for e in events if e.event_id > last_synced]

  def last_synced_event_id(self, catalog_name):
    with self._lock:
      return self._last_synced_event_ids.get(catalog_name)

  def pause(self):
    with self._lock:
      self._paused = True
    LOG.info("Events processor paused")

  def resume(self):
    """Unpauses the processor and clears the error status. Failed catalogs resume
    from their last synced event id."""
    with self._lock:
      self._paused = False
      self._failed_catalogs.clear()
      self._error_msg = None
    LOG.info("Events processor resumed")

  def is_paused(self):
    with self._lock:
      return self._paused

  def get_status(self):
    with self._lock:
      if self._paused:
        return EventProcessorStatus.PAUSED
      if self._failed_catalogs:
        return EventProcessorStatus.ERROR
      return EventProcessorStatus.ACTIVE

  def get_error_msg(self):
    with self._lock:
      return self._error_msg if self._failed_catalogs else None

  def get_metrics(self):
    """Returns the processor metrics, keyed like the catalog's /events page."""
    status = self.get_status()
    with self._lock:
      synced = dict(self._last_synced_event_ids)
      return {
          'status': status,
          'events-received': self._events_received,
          'events-skipped': self._events_skipped,
          'events-applied': self._events_applied,
          'batches-processed': self._batches_processed,
          'last-synced-event-id': max(synced.values()) if synced else 0,
          'last-synced-event-ids': synced,
      }

  def _get_catalog_lock(self, catalog_name):
    with self._lock:
      lock = self._catalog_locks.get(catalog_name)
      if lock is None:
        lock = self._catalog_locks[catalog_name] = threading.Lock()
      return lock

  def _apply_batch(self, result, batch, cancel_event):
    """Applies a coalesced batch. Returns False if the cycle has to stop."""
    for event in batch:
      if cancel_event is not None and cancel_event.is_set():
        result.cancelled = True
        return False
      try:
        self.applier.apply(event)
      except Exception as e:
        result.failed_event = event
        result.error = EventApplyError(event, e)
        return False
      result.applied.append(event)
      result.last_synced_event_id = event.event_id
      with self._lock:
        self._last_synced_event_ids[result.catalog_name] = event.event_id
        self._events_applied += 1
    return True

  def _record_result(self, result):
    with self._lock:
      self._events_received += result.num_received
      self._events_skipped += result.skipped
      self._batches_processed += 1
      if result.error is not None:
        self._failed_catalogs.add(result.catalog_name)
        self._error_msg = str(result.error)
      elif not result.cancelled:
        self._failed_catalogs.discard(result.catalog_name)
