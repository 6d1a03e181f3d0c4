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

"""
Line oriented editing of the cluster.yaml generated by 'kube-aws init'.

The generated file documents most settings as commented out defaults, e.g.
"#workerCount: 1". Loading and dumping it as YAML would drop all of that
documentation, so settings are patched in place: a live top-level key is
replaced, otherwise its commented default is uncommented, otherwise the key
is appended. The result is parsed afterwards to make sure every requested
value landed where kube-aws will read it.
"""

import json
import os
import re
from collections import OrderedDict

from jinja2 import Template
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubeaws_deploy import DeployError

DESCRIPTOR_FILE = 'cluster.yaml'

# indented lines or list items following a live key belong to its value
LIVE_CONTINUATION = re.compile(r'^(\s+\S|-\s)')

# "#  Name: x" or "#  - availabilityZone: x" following a commented key
COMMENTED_CONTINUATION = re.compile(r'^#(\s{2,}\S|\s?-\s)')

PLAIN_SCALAR = re.compile(r'^[A-Za-z][A-Za-z0-9_./-]*$|^[0-9][0-9./-]*/[0-9]+$')

YAML_KEYWORDS = frozenset(['true', 'false', 'yes', 'no', 'on', 'off', 'null', 'y', 'n'])

SUBNETS_TEMPLATE = Template(
    'subnets:\n'
    '{% for subnet in subnets %}'
    '  - availabilityZone: {{ subnet.zone }}\n'
    '    instanceCIDR: {{ subnet.cidr }}\n'
    '{% endfor %}')

STACK_TAGS_TEMPLATE = Template(
    'stackTags:\n'
    '{% for key, value in tags %}'
    '  {{ key }}: {{ value }}\n'
    '{% endfor %}')


def format_scalar(value):
    """Render a Python value as a YAML scalar, quoting strings that need it"""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, int):
        return str(value)
    value = str(value)
    if PLAIN_SCALAR.match(value) and value.lower() not in YAML_KEYWORDS:
        return value
    # a JSON string is a valid double quoted YAML scalar
    return json.dumps(value)


class ClusterDescriptor(object):
    """The lines of a cluster.yaml file and the edits made to them"""

    def __init__(self, text, path=None):
        self.path = path
        self.lines = text.splitlines()

    @classmethod
    def load(cls, path):
        try:
            with open(path) as myfile:
                return cls(myfile.read(), path)
        except (IOError, OSError) as exc:
            raise DeployError('Unable to read %s: %s' % (path, exc))

    def text(self):
        return '\n'.join(self.lines) + '\n'

    def save(self, path=None):
        path = path or self.path
        tmpname = path + '.tmp'
        with open(tmpname, 'w') as myfile:
            myfile.write(self.text())
        os.rename(tmpname, path)

    def find(self, key):
        """Return (index, live) for the line defining key.

        A live "key:" line wins over a commented "#key:" default; the first
        commented default is used. index is None when the key is absent.
        """
        live = re.compile(r'^%s:(\s|$)' % re.escape(key))
        commented = re.compile(r'^#\s?%s:(\s|$)' % re.escape(key))
        first_commented = None
        for index, line in enumerate(self.lines):
            if live.match(line):
                return index, True
            if first_commented is None and commented.match(line):
                first_commented = index
        return first_commented, False

    def block_end(self, index, live):
        """Index just past the value lines that follow the key line at index"""
        continuation = LIVE_CONTINUATION if live else COMMENTED_CONTINUATION
        end = index + 1
        while end < len(self.lines) and continuation.match(self.lines[end]):
            end += 1
        return end

    def replace(self, key, new_lines):
        index, live = self.find(key)
        if index is None:
            if self.lines and self.lines[-1].strip():
                self.lines.append('')
            self.lines.extend(new_lines)
            return
        self.lines[index:self.block_end(index, live)] = new_lines

    def get_line(self, key):
        """The live line for key, or None"""
        index, live = self.find(key)
        if index is None or not live:
            return None
        return self.lines[index]

    def set_value(self, key, value):
        """Set a top-level scalar"""
        self.replace(key, ['%s: %s' % (key, format_scalar(value))])

    def set_block(self, key, text):
        """Set a top-level key to a rendered multi-line block starting with 'key:'"""
        new_lines = text.rstrip('\n').splitlines()
        if not new_lines or not new_lines[0].startswith(key + ':'):
            raise ValueError('block for %s must start with "%s:"' % (key, key))
        self.replace(key, new_lines)

    def comment_out(self, key):
        """Comment out a live top-level key and its value lines, returns True if found"""
        index, live = self.find(key)
        if index is None or not live:
            return False
        for i in range(index, self.block_end(index, live)):
            self.lines[i] = '#' + self.lines[i]
        return True

    def parse(self):
        """Parse the current text, raising DeployError if it is not a YAML mapping"""
        yaml = YAML(typ='safe')
        try:
            data = yaml.load(self.text())
        except YAMLError as exc:
            raise DeployError('%s is not valid YAML after editing: %s' %
                              (self.path or DESCRIPTOR_FILE, exc))
        if not isinstance(data, dict):
            raise DeployError('%s does not contain a YAML mapping' % (self.path or DESCRIPTOR_FILE))
        return data

    def verify(self, expected):
        """Return the keys whose parsed value differs from expected.

        An expected value of None means the key must be absent.
        """
        data = self.parse()
        return [key for key, value in expected.items() if data.get(key) != value]


def render_subnets(zones, cidrs):
    subnets = [{'zone': format_scalar(zone), 'cidr': format_scalar(cidr)}
               for zone, cidr in zip(zones, cidrs)]
    return SUBNETS_TEMPLATE.render(subnets=subnets)


def render_stack_tags(tags):
    return STACK_TAGS_TEMPLATE.render(
        tags=[(format_scalar(key), format_scalar(value)) for key, value in tags.items()])


def customize_descriptor(descriptor, params):
    """Apply the cluster parameters to the descriptor.

    Returns the mapping of top-level keys to the values kube-aws must read
    back, for ClusterDescriptor.verify().
    """
    expected = OrderedDict()

    def set_value(key, value):
        descriptor.set_value(key, value)
        expected[key] = value

    set_value('createRecordSet', True)
    set_value('recordSetTTL', params.record_set_ttl)
    set_value('hostedZoneId', params.hosted_zone_id)

    set_value('controllerCount', params.controller_count)
    set_value('controllerInstanceType', params.controller_instance_type)
    set_value('controllerRootVolumeSize', params.controller_root_volume_size)
    set_value('workerCount', params.worker_count)
    set_value('workerInstanceType', params.worker_instance_type)
    set_value('workerRootVolumeSize', params.worker_root_volume_size)
    if params.worker_spot_price:
        set_value('workerSpotPrice', str(params.worker_spot_price))
    set_value('etcdCount', params.etcd_count)
    set_value('etcdInstanceType', params.etcd_instance_type)

    set_value('vpcCIDR', params.vpc_cidr)
    if len(params.zones) == 1:
        set_value('availabilityZone', params.zones[0])
        set_value('instanceCIDR', params.subnet_cidrs[0])
    else:
        # kube-aws rejects a single zone setting next to a subnets list
        descriptor.comment_out('availabilityZone')
        descriptor.comment_out('instanceCIDR')
        expected['availabilityZone'] = None
        expected['instanceCIDR'] = None
        descriptor.set_block('subnets', render_subnets(params.zones, params.subnet_cidrs))
        expected['subnets'] = [{'availabilityZone': zone, 'instanceCIDR': cidr}
                               for zone, cidr in zip(params.zones, params.subnet_cidrs)]

    if params.kubernetes_version:
        set_value('kubernetesVersion', params.kubernetes_version)
    set_value('useCalico', params.use_calico)

    if params.stack_tags:
        descriptor.set_block('stackTags', render_stack_tags(params.stack_tags))
        expected['stackTags'] = dict(params.stack_tags)

    return expected


def patch_descriptor(path, params):
    """Customize the cluster.yaml at path and verify the result, returns 0 on success"""
    descriptor = ClusterDescriptor.load(path)
    expected = customize_descriptor(descriptor, params)
    mismatched = descriptor.verify(expected)
    if mismatched:
        rejected = path + '.rejected'
        descriptor.save(rejected)
        print('Edited descriptor does not set: %s' % ', '.join(mismatched))
        print('preserved edited file', rejected)
        return 1
    descriptor.save()
    for key, value in expected.items():
        if value is not None:
            print('  %s: %s' % (key, value))
    return 0


def update_descriptor(path, values):
    """Set the given top-level scalars of an existing cluster.yaml, returns 0 on success"""
    descriptor = ClusterDescriptor.load(path)
    for key, value in values.items():
        descriptor.set_value(key, value)
    mismatched = descriptor.verify(values)
    if mismatched:
        print('Edited descriptor does not set: %s' % ', '.join(mismatched))
        return 1
    descriptor.save()
    return 0
