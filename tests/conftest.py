"""
Copyright 2019 Tad Lebeck

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   http://www.apache.org/licenses/LICENSE-2.0
Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import os

import pytest

from kubeaws_deploy import settings
from stubs import StubSession, account_responses

FIXTURES = os.path.join(os.path.dirname(__file__), 'fixtures')

_AWS_TEST_ENV_DEFAULTS = {
    'AWS_EC2_METADATA_DISABLED': 'true',
    'AWS_CONFIG_FILE': '/dev/null',
    'AWS_SHARED_CREDENTIALS_FILE': '/dev/null',
}


@pytest.fixture
def responses():
    return account_responses()


@pytest.fixture
def session(responses):
    return StubSession(responses)


@pytest.fixture
def cluster_yaml_text():
    with open(os.path.join(FIXTURES, 'cluster.yaml')) as myfile:
        return myfile.read()


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    # no real config file or parameter variables leak into tests
    monkeypatch.setenv('HOME', str(tmp_path))
    monkeypatch.delenv(settings.CONFIG_FILE_ENV, raising=False)
    for _, env, _, _ in settings.PARAMETERS:
        monkeypatch.delenv(env, raising=False)
    for key in ('AWS_REGION', 'AWS_ACCESS_KEY_ID', 'AWS_SECRET_ACCESS_KEY'):
        monkeypatch.delenv(key, raising=False)
    for key, value in _AWS_TEST_ENV_DEFAULTS.items():
        monkeypatch.setenv(key, value)
