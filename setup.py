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


"""Coalescing and apply engine for Hive Metastore notification events, used to keep
a catalog cache in sync with the metastore.
"""

from setuptools import find_packages, setup


def parse_requirements(requirements_file='requirements.txt'):
    """
    Parse requirements from the requirements file, stripping comments.

    Args:
      requirements_file: path to a requirements file

    Returns:
      a list of python packages
    """
    lines = []
    with open(requirements_file) as reqs:
        for _ in reqs:
            line = _.split('#')[0]
            if line.strip():
                lines.append(line)
    return lines


setup(
  name='metastore_events',
  version='0.0.1',
  author_email='dev@impala.apache.org',
  description='Coalescing of Hive Metastore events for catalog cache syncing',
  packages=find_packages(include=['metastore_events', 'metastore_events.*']),
  include_package_data=True,
  python_requires='>=3.6',
  install_requires=parse_requirements(),
  extras_require={
    'test': parse_requirements('test-requirements.txt'),
  },
)
