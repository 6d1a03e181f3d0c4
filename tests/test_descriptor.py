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

import argparse
from collections import OrderedDict

import pytest

from kubeaws_deploy import DeployError
from kubeaws_deploy.descriptor import (ClusterDescriptor, customize_descriptor, format_scalar,
                                       patch_descriptor, update_descriptor)


def cluster_params(**overrides):
    values = {
        'record_set_ttl': 300,
        'hosted_zone_id': 'ZPUB',
        'controller_count': 1,
        'controller_instance_type': 't2.medium',
        'controller_root_volume_size': 30,
        'worker_count': 3,
        'worker_instance_type': 'm4.large',
        'worker_root_volume_size': 50,
        'worker_spot_price': None,
        'etcd_count': 3,
        'etcd_instance_type': 't2.medium',
        'vpc_cidr': '10.0.0.0/16',
        'zones': ['us-west-2a'],
        'subnet_cidrs': ['10.0.0.0/24'],
        'kubernetes_version': None,
        'use_calico': False,
        'stack_tags': OrderedDict(),
    }
    values.update(overrides)
    return argparse.Namespace(**values)


@pytest.mark.parametrize('value, expected', [
    (True, 'true'),
    (False, 'false'),
    (3, '3'),
    ('t2.medium', 't2.medium'),
    ('us-west-2a', 'us-west-2a'),
    ('10.0.0.0/16', '10.0.0.0/16'),
    ('v1.5.4_coreos.0', 'v1.5.4_coreos.0'),
    ('0.05', '"0.05"'),
    ('yes', '"yes"'),
    ('arn:aws:kms:us-west-2:1:key/x', '"arn:aws:kms:us-west-2:1:key/x"'),
    ('two words', '"two words"'),
])
def test_format_scalar(value, expected):
    assert format_scalar(value) == expected


def test_set_value_uncomments_default_and_keeps_documentation(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    desc.set_value('workerCount', 3)
    text = desc.text()
    assert '\nworkerCount: 3\n' in text
    assert '#workerCount' not in text
    assert '# Number of worker nodes to create\nworkerCount: 3\n' in text


def test_set_value_replaces_live_key(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    desc.set_value('createRecordSet', True)
    assert desc.get_line('createRecordSet') == 'createRecordSet: true'
    assert 'createRecordSet: false' not in desc.text()


def test_set_value_appends_missing_key(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    desc.set_value('mapPublicIPs', False)
    assert desc.lines[-1] == 'mapPublicIPs: false'
    assert desc.lines[-2] == ''
    assert desc.parse()['mapPublicIPs'] is False


def test_prose_comments_are_not_keys(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    # "# Kubernetes subnets with ..." must not be taken for the subnets default
    index, live = desc.find('subnets')
    assert not live
    assert desc.lines[index] == '#subnets:'


def test_set_block_replaces_commented_example(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    desc.set_block('subnets', 'subnets:\n  - availabilityZone: us-west-2b\n'
                              '    instanceCIDR: 10.0.1.0/24\n')
    text = desc.text()
    assert 'us-west-1a' not in text
    assert 'us-west-1b' not in text
    assert desc.parse()['subnets'] == [{'availabilityZone': 'us-west-2b',
                                        'instanceCIDR': '10.0.1.0/24'}]


def test_set_block_requires_key_header(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    with pytest.raises(ValueError):
        desc.set_block('stackTags', '  Name: x\n')


def test_set_value_replaces_live_block():
    desc = ClusterDescriptor('stackTags:\n  Name: a\n  Env: b\nregion: us-west-2\n')
    desc.set_value('stackTags', 'none')
    assert desc.text() == 'stackTags: none\nregion: us-west-2\n'


def test_comment_out_live_key(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    assert desc.comment_out('availabilityZone')
    assert 'availabilityZone' not in desc.parse()
    assert not desc.comment_out('availabilityZone')
    assert not desc.comment_out('noSuchKey')


def test_customize_single_zone(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    expected = customize_descriptor(desc, cluster_params(kubernetes_version='v1.5.4_coreos.0'))
    assert desc.verify(expected) == []
    data = desc.parse()
    assert data['createRecordSet'] is True
    assert data['recordSetTTL'] == 300
    assert data['hostedZoneId'] == 'ZPUB'
    assert data['workerCount'] == 3
    assert data['workerInstanceType'] == 'm4.large'
    assert data['workerRootVolumeSize'] == 50
    assert data['etcdCount'] == 3
    assert data['availabilityZone'] == 'us-west-2a'
    assert data['instanceCIDR'] == '10.0.0.0/24'
    assert data['vpcCIDR'] == '10.0.0.0/16'
    assert data['kubernetesVersion'] == 'v1.5.4_coreos.0'
    assert data['useCalico'] is False
    assert 'subnets' not in data
    assert 'workerSpotPrice' not in data
    assert 'stackTags' not in data
    # untouched settings survive
    assert data['kmsKeyArn'].startswith('arn:aws:kms:')
    assert data['clusterName'] == 'kube-aws-cluster'


def test_customize_multiple_zones_spot_and_tags(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    params = cluster_params(
        zones=['us-west-2a', 'us-west-2b'],
        subnet_cidrs=['10.0.0.0/24', '10.0.1.0/24'],
        worker_spot_price='0.05',
        use_calico=True,
        stack_tags=OrderedDict([('Owner', 'ops team'), ('Environment', 'dev')]))
    expected = customize_descriptor(desc, params)
    assert desc.verify(expected) == []
    data = desc.parse()
    assert 'availabilityZone' not in data
    assert 'instanceCIDR' not in data
    assert data['subnets'] == [
        {'availabilityZone': 'us-west-2a', 'instanceCIDR': '10.0.0.0/24'},
        {'availabilityZone': 'us-west-2b', 'instanceCIDR': '10.0.1.0/24'},
    ]
    assert data['workerSpotPrice'] == '0.05'
    assert data['useCalico'] is True
    assert data['stackTags'] == {'Owner': 'ops team', 'Environment': 'dev'}
    assert '#availabilityZone: us-west-2a' in desc.text()


def test_verify_reports_mismatches(cluster_yaml_text):
    desc = ClusterDescriptor(cluster_yaml_text)
    assert desc.verify({'region': 'us-west-2', 'keyName': 'other', 'workerCount': None}) == \
        ['keyName']


def test_parse_rejects_invalid_yaml():
    desc = ClusterDescriptor('clusterName: [unclosed\n', path='cluster.yaml')
    with pytest.raises(DeployError, match='not valid YAML'):
        desc.parse()


def test_parse_rejects_non_mapping():
    with pytest.raises(DeployError, match='mapping'):
        ClusterDescriptor('- a\n- b\n').parse()


def test_patch_descriptor_writes_file(tmp_path, cluster_yaml_text, capsys):
    path = tmp_path / 'cluster.yaml'
    path.write_text(cluster_yaml_text)
    assert patch_descriptor(str(path), cluster_params()) == 0
    text = path.read_text()
    assert 'workerCount: 3\n' in text
    assert 'hostedZoneId: ZPUB\n' in text
    assert not (tmp_path / 'cluster.yaml.tmp').exists()
    assert 'workerCount: 3' in capsys.readouterr().out


def test_update_descriptor_sets_scalars(tmp_path, cluster_yaml_text):
    path = tmp_path / 'cluster.yaml'
    path.write_text(cluster_yaml_text)
    assert update_descriptor(str(path), {'workerCount': 5, 'workerInstanceType': 'm4.xlarge'}) == 0
    data = ClusterDescriptor.load(str(path)).parse()
    assert data['workerCount'] == 5
    assert data['workerInstanceType'] == 'm4.xlarge'


def test_load_missing_file(tmp_path):
    with pytest.raises(DeployError, match='Unable to read'):
        ClusterDescriptor.load(str(tmp_path / 'cluster.yaml'))
