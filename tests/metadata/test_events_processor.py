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

# Tests for the events processor: grouping by catalog, coalesce-and-apply cycles,
# partial failures, cancellation and per-catalog serialization.

import logging
import threading
import time
from collections import defaultdict

import pytest

from metastore_events.catalog_state import CatalogState, apply_sequence
from metastore_events.config import ProcessorConfig
from metastore_events.errors import (
    EventApplyError,
    EventOrderingError,
    EventProcessorPausedError)
from metastore_events.events import (
    alter_partition_event,
    alter_table_event,
    create_table_event,
    drop_table_event,
    insert_event)
from metastore_events.log_utils import CONSOLE_HANDLER, FILE_HANDLER
from metastore_events.processor import (
    EventProcessorStatus,
    MetastoreEventsProcessor,
    group_by_catalog)
from tests.util.event_generator import EventGenerator, random_catalog_state

DB = 'test_db'


class MultiCatalogApplier(object):
  """Applies events to one CatalogState per catalog. Fails on the event ids in
  'fail_on' and sets 'cancel_event' after 'cancel_after' applied events."""

  def __init__(self, states=None, fail_on=(), cancel_after=None, cancel_event=None,
               delay_s=0):
    self.states = states or {}
    self.fail_on = set(fail_on)
    self.cancel_after = cancel_after
    self.cancel_event = cancel_event
    self.delay_s = delay_s
    self.applied = []
    self.lock = threading.Lock()
    self.in_flight = defaultdict(int)
    self.max_in_flight = defaultdict(int)
    self.max_total_in_flight = 0

  def apply(self, event):
    with self.lock:
      self.in_flight[event.catalog_name] += 1
      self.max_in_flight[event.catalog_name] = max(
          self.max_in_flight[event.catalog_name], self.in_flight[event.catalog_name])
      self.max_total_in_flight = max(self.max_total_in_flight,
                                     sum(self.in_flight.values()))
    try:
      if self.delay_s:
        time.sleep(self.delay_s)
      if event.event_id in self.fail_on:
        raise IOError("metastore unavailable while loading {0}".format(event))
      state = self.states.setdefault(event.catalog_name,
                                     CatalogState(event.catalog_name))
      state.apply(event)
      with self.lock:
        self.applied.append(event)
        if self.cancel_after is not None and len(self.applied) >= self.cancel_after:
          self.cancel_event.set()
    finally:
      with self.lock:
        self.in_flight[event.catalog_name] -= 1


def partition_burst(catalog_name, first_event_id=1):
  """Alters of one partition followed by a table insert; coalesces to the insert."""
  events = [alter_partition_event(first_event_id + i, catalog_name, DB, 't1', 'p1')
            for i in range(5)]
  events.append(insert_event(first_event_id + 5, catalog_name, DB, 't1'))
  return events


class TestEventsProcessor(object):

  def test_group_by_catalog(self):
    a1, b1, a2 = (insert_event(1, 'a', DB, 't1'), insert_event(1, 'b', DB, 't1'),
                  insert_event(2, 'a', DB, 't2'))
    groups = group_by_catalog([a1, b1, a2])
    assert list(groups.items()) == [('a', [a1, a2]), ('b', [b1])]

  def test_process_batch(self):
    processor = MetastoreEventsProcessor(MultiCatalogApplier())
    events = partition_burst('ctl')
    assert processor.process_batch('ctl', events) == [events[-1]]
    assert processor.process_batch('ctl', []) == []

  def test_process_batch_without_coalescing(self):
    processor = MetastoreEventsProcessor(
        MultiCatalogApplier(), ProcessorConfig(coalesce_events=False))
    events = partition_burst('ctl')
    assert processor.process_batch('ctl', events) == events
    with pytest.raises(EventOrderingError):
      processor.process_batch('ctl', list(reversed(events)))

  def test_sync_catalog(self):
    applier = MultiCatalogApplier()
    processor = MetastoreEventsProcessor(applier)
    events = [create_table_event(1, 'ctl', DB, 't1')] + partition_burst('ctl', 2)
    result = processor.sync_catalog('ctl', events)
    assert result.succeeded
    assert result.applied == [events[0], events[-1]]
    assert result.skipped == 5
    assert result.last_synced_event_id == 7
    assert processor.last_synced_event_id('ctl') == 7
    metrics = processor.get_metrics()
    assert metrics['status'] == EventProcessorStatus.ACTIVE
    assert metrics['events-received'] == 7
    assert metrics['events-skipped'] == 5
    assert metrics['events-applied'] == 2
    assert metrics['batches-processed'] == 1
    assert metrics['last-synced-event-id'] == 7

  def test_ordering_violation_applies_nothing(self):
    applier = MultiCatalogApplier()
    processor = MetastoreEventsProcessor(applier)
    events = [insert_event(2, 'ctl', DB, 't1'), insert_event(1, 'ctl', DB, 't2')]
    with pytest.raises(EventOrderingError):
      processor.sync_catalog('ctl', events)
    with pytest.raises(EventOrderingError):
      processor.process_all({'ok': partition_burst('ok'), 'ctl': events})
    assert applier.applied == []

  def test_apply_failure_reports_resume_point(self):
    applier = MultiCatalogApplier(fail_on=[3])
    processor = MetastoreEventsProcessor(applier)
    events = [create_table_event(1, 'ctl', DB, 't0'),
              alter_table_event(2, 'ctl', DB, 't1', rename_to='t2'),
              drop_table_event(3, 'ctl', DB, 't2'),
              insert_event(4, 'ctl', DB, 't3')]
    result = processor.sync_catalog('ctl', events)
    assert not result.succeeded
    assert result.failed_event == events[2]
    assert isinstance(result.error, EventApplyError)
    assert isinstance(result.error.cause, IOError)
    assert result.last_synced_event_id == 2
    assert [e.event_id for e in applier.applied] == [1, 2]
    assert processor.get_status() == EventProcessorStatus.ERROR
    assert 'metastore unavailable' in processor.get_error_msg()

    # The next poll re-delivers everything after the resume point.
    applier.fail_on.clear()
    redelivered = processor.filter_new_events('ctl', events)
    assert redelivered == events[2:]
    result = processor.sync_catalog('ctl', redelivered)
    assert result.succeeded
    assert result.last_synced_event_id == 4
    assert processor.get_status() == EventProcessorStatus.ACTIVE
    assert processor.get_error_msg() is None
    assert applier.states['ctl'] == apply_sequence(CatalogState('ctl'), events)

  def test_cancellation_stops_on_a_prefix(self):
    cancel_event = threading.Event()
    applier = MultiCatalogApplier(cancel_after=2, cancel_event=cancel_event)
    processor = MetastoreEventsProcessor(applier)
    events = [create_table_event(i, 'ctl', DB, 't%d' % i) for i in range(1, 6)]
    result = processor.sync_catalog('ctl', events, cancel_event=cancel_event)
    assert result.cancelled and not result.succeeded
    assert result.applied == events[:2]
    assert result.last_synced_event_id == 2
    assert processor.get_status() == EventProcessorStatus.ACTIVE

  def test_already_cancelled(self):
    cancel_event = threading.Event()
    cancel_event.set()
    applier = MultiCatalogApplier()
    processor = MetastoreEventsProcessor(applier)
    result = processor.process_all(partition_burst('ctl'), cancel_event=cancel_event)
    assert result['ctl'].cancelled
    assert result['ctl'].last_synced_event_id is None
    assert applier.applied == []

  def test_pause_and_resume(self):
    processor = MetastoreEventsProcessor(MultiCatalogApplier())
    processor.pause()
    assert processor.get_status() == EventProcessorStatus.PAUSED
    with pytest.raises(EventProcessorPausedError):
      processor.sync_catalog('ctl', partition_burst('ctl'))
    processor.resume()
    assert processor.sync_catalog('ctl', partition_burst('ctl')).succeeded

  def test_small_batches(self, rand):
    initial = random_catalog_state(rand, catalog_name='ctl')
    applier = MultiCatalogApplier(states={'ctl': initial.copy()})
    processor = MetastoreEventsProcessor(applier,
                                         ProcessorConfig(max_events_per_batch=7))
    events = EventGenerator(rand, catalog_name='ctl').produce_events(200)
    result = processor.sync_catalog('ctl', events)
    assert result.succeeded
    assert result.last_synced_event_id == events[-1].event_id
    assert result.skipped == len(events) - len(result.applied)
    assert applier.states['ctl'] == apply_sequence(initial, events)

  def test_process_all(self, rand):
    catalogs = ['hive_a', 'hive_b', 'hive_c']
    initial = dict((name, random_catalog_state(rand, catalog_name=name))
                   for name in catalogs)
    streams = dict((name, EventGenerator(rand, catalog_name=name).produce_events(300))
                   for name in catalogs)
    # Interleave the streams, keeping each catalog's order.
    mixed = []
    positions = dict((name, 0) for name in catalogs)
    while any(positions[name] < len(streams[name]) for name in catalogs):
      name = rand.choice([n for n in catalogs if positions[n] < len(streams[n])])
      mixed.append(streams[name][positions[name]])
      positions[name] += 1

    applier = MultiCatalogApplier(
        states=dict((name, state.copy()) for name, state in initial.items()))
    processor = MetastoreEventsProcessor(applier)
    result = processor.process_all(mixed)
    assert result.succeeded
    assert result.failed_catalogs == []
    assert sorted(result.results) == catalogs
    for name in catalogs:
      assert result.last_synced_event_ids[name] == streams[name][-1].event_id
      assert applier.states[name] == apply_sequence(initial[name], streams[name])
    assert processor.get_metrics()['events-received'] == len(mixed)

  def test_process_all_partial_failure(self):
    applier = MultiCatalogApplier(fail_on=[13])
    processor = MetastoreEventsProcessor(applier)
    result = processor.process_all({
        'good': partition_burst('good'),
        'bad': [insert_event(11, 'bad', DB, 't1'), insert_event(12, 'bad', DB, 't2'),
                insert_event(13, 'bad', DB, 't3'), insert_event(14, 'bad', DB, 't4')]})
    assert not result.succeeded
    assert result.failed_catalogs == ['bad']
    assert result.last_synced_event_ids == {'good': 6, 'bad': 12}
    assert result['bad'].failed_event.event_id == 13

  def test_empty_input(self):
    processor = MetastoreEventsProcessor(MultiCatalogApplier())
    assert processor.process_all([]).results == {}
    result = processor.sync_catalog('ctl', [])
    assert result.succeeded and result.applied == []

  def test_catalogs_serialized_and_parallel(self):
    applier = MultiCatalogApplier(delay_s=0.01)
    processor = MetastoreEventsProcessor(applier, ProcessorConfig(num_threads=4))
    batches = [(name, [create_table_event(base + i, name, DB, 't%d' % i)
                       for i in range(5)])
               for base in (1, 101) for name in ('a', 'b')]
    threads = [threading.Thread(target=processor.sync_catalog, args=batch)
               for batch in batches]
    for t in threads:
      t.start()
    for t in threads:
      t.join()
    assert applier.max_in_flight['a'] == 1
    assert applier.max_in_flight['b'] == 1
    assert len(applier.applied) == 20

  def test_resume_clears_error(self):
    processor = MetastoreEventsProcessor(MultiCatalogApplier(fail_on=[1]))
    result = processor.sync_catalog('ctl', [insert_event(1, 'ctl', DB, 't1')])
    assert not result.succeeded
    assert processor.get_status() == EventProcessorStatus.ERROR
    processor.resume()
    assert processor.get_status() == EventProcessorStatus.ACTIVE
    assert processor.get_error_msg() is None
    assert processor.last_synced_event_id('ctl') is None

  def test_rename_absorbs_create_before_apply(self):
    applier = MultiCatalogApplier(fail_on=[3])
    processor = MetastoreEventsProcessor(applier)
    events = [create_table_event(1, 'ctl', DB, 't1'),
              alter_table_event(2, 'ctl', DB, 't1', rename_to='t2'),
              drop_table_event(3, 'ctl', DB, 't2')]
    result = processor.sync_catalog('ctl', events)
    assert result.skipped == 1
    assert [e.event_id for e in applier.applied] == [2]
    assert result.failed_event == events[2]
    assert result.last_synced_event_id == 2


class TestEventsProcessorFromConfig(object):

  def test_from_config(self, package_logger, tmpdir):
    config_file = tmpdir.join('events.cfg')
    config_file.write("[metastore_events]\ncoalesce_events=false\nnum_threads=2\n"
                      "log_level=DEBUG\n")
    debug_log = tmpdir.join('debug.log')
    applier = MultiCatalogApplier()
    processor = MetastoreEventsProcessor.from_config(
        applier, config_filename=str(config_file),
        environ={'METASTORE_EVENTS_MAX_EVENTS_PER_BATCH': '3'},
        debug_log_file=str(debug_log))
    assert processor.applier is applier
    assert processor.config.as_dict() == {
        'coalesce_events': False, 'max_events_per_batch': 3, 'num_threads': 2,
        'log_level': 'DEBUG'}
    assert sorted(h.name for h in package_logger.handlers) == sorted(
        [CONSOLE_HANDLER, FILE_HANDLER])

    events = partition_burst('ctl')
    assert processor.sync_catalog('ctl', events).applied == events
    for handler in package_logger.handlers:
      handler.flush()
    contents = debug_log.read()
    assert 'Starting events processor' in contents
    assert 'Syncing 6 events for catalog ctl' in contents

  def test_from_config_log_level(self, package_logger):
    processor = MetastoreEventsProcessor.from_config(
        MultiCatalogApplier(), environ={'METASTORE_EVENTS_LOG_LEVEL': 'ERROR'})
    assert processor.config.log_level == 'ERROR'
    assert package_logger.handlers[-1].level == logging.ERROR
    assert not logging.getLogger('metastore_events.processor').isEnabledFor(
        logging.INFO)
