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

# py.test configuration module
#
import logging
import random
import time

import pytest

from metastore_events.catalog_state import CatalogState
from tests.util.event_generator import TEST_CATALOG

logging.basicConfig(level=logging.INFO, format='%(threadName)s: %(message)s')
LOG = logging.getLogger('test_configuration')

DEFAULT_RANDOM_ITERATIONS = 200


def pytest_addoption(parser):
  """Adds a new command line options to py.test"""
  parser.addoption("--event_seed", type=int, default=None,
                   help="Seed for the random event streams. Defaults to a fixed seed so "
                   "that runs are reproducible; pass -1 to seed from the clock.")

  parser.addoption("--random_iterations", type=int, default=DEFAULT_RANDOM_ITERATIONS,
                   help="Number of random event streams checked by the randomized "
                   "coalescing tests.")


@pytest.fixture
def event_seed(request):
  seed = request.config.getoption("event_seed")
  if seed is None:
    seed = 20240101
  elif seed == -1:
    seed = int(time.time())
  LOG.info("Random event seed: %d", seed)
  return seed


@pytest.fixture
def rand(event_seed):
  """A random.Random seeded with --event_seed. Failures report the seed in the log."""
  return random.Random(event_seed)


@pytest.fixture
def random_iterations(request):
  return request.config.getoption("random_iterations")


@pytest.fixture
def empty_catalog():
  return CatalogState(TEST_CATALOG)


@pytest.fixture
def package_logger():
  """The metastore_events logger, restored to its original handlers and level after
  the test."""
  logger = logging.getLogger('metastore_events')
  handlers, level = list(logger.handlers), logger.level
  yield logger
  for handler in logger.handlers:
    if handler not in handlers:
      handler.close()
  logger.handlers = handlers
  logger.setLevel(level)
