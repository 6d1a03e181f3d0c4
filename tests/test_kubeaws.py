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

from argparse import Namespace

import pytest

from kubeaws_deploy import kubeaws, tools


@pytest.fixture
def calls(monkeypatch):
    recorded = []

    def call(cmd_list, cwd=None, env=None):
        recorded.append((cmd_list, cwd))
        return 0

    monkeypatch.setattr(tools.subprocess, 'call', call)
    return recorded


def test_init_flags(calls):
    params = Namespace(
        cluster_name='demo',
        external_dns_name='kube.example.com',
        region='us-west-2',
        zones=['us-west-2b', 'us-west-2c'],
        key_name='dev',
        kms_key_arn='arn:aws:kms:us-west-2:1:key/k1',
        hosted_zone_id='ZPUB',
    )
    assert kubeaws.launch_init('/work/demo', params) == 0
    assert calls == [([
        'kube-aws', 'init',
        '--cluster-name=demo',
        '--external-dns-name=kube.example.com',
        '--region=us-west-2',
        '--availability-zone=us-west-2b',
        '--key-name=dev',
        '--kms-key-arn=arn:aws:kms:us-west-2:1:key/k1',
        '--hosted-zone-id=ZPUB',
    ], '/work/demo')]


def test_render_steps(calls):
    kubeaws.render_credentials('/work/demo')
    kubeaws.render_stack('/work/demo')
    kubeaws.validate('/work/demo', 's3://assets/demo')
    assert [cmd for cmd, _ in calls] == [
        ['kube-aws', 'render', 'credentials', '--generate-ca'],
        ['kube-aws', 'render', 'stack'],
        ['kube-aws', 'validate', '--s3-uri=s3://assets/demo'],
    ]


def test_up_and_export(calls):
    kubeaws.launch_up('/work/demo', 's3://assets/demo')
    kubeaws.launch_up('/work/demo', 's3://assets/demo', export=True)
    assert calls[0][0] == ['kube-aws', 'up', '--s3-uri=s3://assets/demo']
    assert calls[1][0] == ['kube-aws', 'up', '--s3-uri=s3://assets/demo', '--export', '--pretty-print']


def test_lifecycle_commands(calls):
    kubeaws.launch_update('/work/demo', 's3://assets/demo')
    kubeaws.status('/work/demo')
    kubeaws.destroy('/work/demo')
    assert [cmd for cmd, _ in calls] == [
        ['kube-aws', 'update', '--s3-uri=s3://assets/demo'],
        ['kube-aws', 'status'],
        ['kube-aws', 'destroy'],
    ]
    assert set(cwd for _, cwd in calls) == {'/work/demo'}
