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
Cluster parameters: built-in defaults, the config file and the environment.

Precedence, highest first:
- command line flag
- environment variable
- config file, section [cluster], keys named after the parameter
- built-in default
"""

import configparser
import ipaddress
import os
import re
from collections import OrderedDict

from kubeaws_deploy import DeployError

# default config file, read when present
DEFAULT_CONFIG_FILE = os.path.join('~', '.kube-aws', 'deploy.cfg')

# environment variable naming an alternate config file
CONFIG_FILE_ENV = 'KUBE_AWS_DEPLOY_CONFIG'

CONFIG_SECTION = 'cluster'

# default region for clusters when neither the profile nor the user names one
DEFAULT_REGION = 'us-west-2'

# default instance type for all node roles
DEFAULT_INSTANCE_TYPE = 't2.medium'

# minutes to wait for worker nodes to become Ready
DEFAULT_WAIT_MINUTES = 15

# prefix length of each subnet carved out of the VPC, one per zone
SUBNET_PREFIX = 24

# (name, environment variable, default, kind)
PARAMETERS = [
    ('cluster_name', 'KUBE_AWS_CLUSTER_NAME', 'kube-aws-cluster', 'str'),
    ('profile', 'AWS_PROFILE', 'default', 'str'),
    ('region', 'AWS_DEFAULT_REGION', None, 'str'),
    ('zones', 'KUBE_AWS_ZONES', None, 'list'),
    ('key_name', 'KUBE_AWS_KEY_NAME', None, 'str'),
    ('ssh_public_key', 'KUBE_AWS_SSH_PUBLIC_KEY', None, 'str'),
    ('external_dns_name', 'KUBE_AWS_EXTERNAL_DNS_NAME', None, 'str'),
    ('hosted_zone', 'KUBE_AWS_HOSTED_ZONE', None, 'str'),
    ('hosted_zone_id', 'KUBE_AWS_HOSTED_ZONE_ID', None, 'str'),
    ('s3_bucket', 'KUBE_AWS_S3_BUCKET', None, 'str'),
    ('s3_prefix', 'KUBE_AWS_S3_PREFIX', None, 'str'),
    ('kms_key', 'KUBE_AWS_KMS_KEY', None, 'str'),
    ('create_bucket', 'KUBE_AWS_CREATE_BUCKET', False, 'bool'),
    ('create_kms_key', 'KUBE_AWS_CREATE_KMS_KEY', False, 'bool'),
    ('worker_count', 'KUBE_AWS_WORKER_COUNT', 1, 'int'),
    ('worker_instance_type', 'KUBE_AWS_WORKER_INSTANCE_TYPE', DEFAULT_INSTANCE_TYPE, 'str'),
    ('worker_root_volume_size', 'KUBE_AWS_WORKER_ROOT_VOLUME_SIZE', 30, 'int'),
    ('worker_spot_price', 'KUBE_AWS_WORKER_SPOT_PRICE', None, 'str'),
    ('controller_count', 'KUBE_AWS_CONTROLLER_COUNT', 1, 'int'),
    ('controller_instance_type', 'KUBE_AWS_CONTROLLER_INSTANCE_TYPE',
     DEFAULT_INSTANCE_TYPE, 'str'),
    ('controller_root_volume_size', 'KUBE_AWS_CONTROLLER_ROOT_VOLUME_SIZE', 30, 'int'),
    ('etcd_count', 'KUBE_AWS_ETCD_COUNT', 1, 'int'),
    ('etcd_instance_type', 'KUBE_AWS_ETCD_INSTANCE_TYPE', DEFAULT_INSTANCE_TYPE, 'str'),
    ('vpc_cidr', 'KUBE_AWS_VPC_CIDR', '10.0.0.0/16', 'str'),
    ('kubernetes_version', 'KUBE_AWS_KUBERNETES_VERSION', None, 'str'),
    ('use_calico', 'KUBE_AWS_USE_CALICO', False, 'bool'),
    ('tags', 'KUBE_AWS_TAGS', None, 'list'),
    ('record_set_ttl', 'KUBE_AWS_RECORD_SET_TTL', 300, 'int'),
    ('assets_dir', 'KUBE_AWS_ASSETS_DIR', '.', 'str'),
    ('wait_minutes', 'KUBE_AWS_WAIT_MINUTES', DEFAULT_WAIT_MINUTES, 'int'),
]

PARAMETER_NAMES = [param[0] for param in PARAMETERS]

LABEL_RE = re.compile(r'^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$')


def to_bool(value):
    """Convert a config or environment string to a bool, the way configparser does"""
    lowered = value.strip().lower()
    if lowered not in configparser.ConfigParser.BOOLEAN_STATES:
        raise ValueError('not a boolean: %r' % value)
    return configparser.ConfigParser.BOOLEAN_STATES[lowered]


def to_list(value):
    """Split a comma separated string, dropping empty items"""
    return [item.strip() for item in value.split(',') if item.strip()]


def to_str(value):
    value = value.strip()
    return value if value else None


CONVERTERS = {
    'str': to_str,
    'int': int,
    'bool': to_bool,
    'list': to_list,
}


def coerce(name, kind, raw, source):
    """Convert raw text from source to the parameter's kind"""
    try:
        return CONVERTERS[kind](raw)
    except ValueError as exc:
        raise DeployError('invalid value for %s in %s: %s' % (name, source, exc))


def config_path(explicit=None, environ=None):
    """Return (path, required) for the config file to read"""
    environ = os.environ if environ is None else environ
    if explicit:
        return os.path.expanduser(explicit), True
    if environ.get(CONFIG_FILE_ENV):
        return os.path.expanduser(environ[CONFIG_FILE_ENV]), True
    return os.path.expanduser(DEFAULT_CONFIG_FILE), False


def read_config(path, required=False):
    """Read the [cluster] section of an INI config file.

    Returns a dict of raw string values keyed by parameter name. Unknown
    keys are rejected so that typos do not silently fall back to defaults.
    """
    parser = configparser.ConfigParser()
    try:
        found = parser.read(path)
    except configparser.Error as exc:
        raise DeployError('Unexpected error reading %s: %s' % (path, exc))

    if not found:
        if required:
            raise DeployError('config file %s not found' % path)
        return {}

    if not parser.has_section(CONFIG_SECTION):
        print('No [%s] section in %s, ignoring it' % (CONFIG_SECTION, path))
        return {}

    values = dict(parser.items(CONFIG_SECTION))
    unknown = sorted(set(values) - set(PARAMETER_NAMES))
    if unknown:
        raise DeployError('unknown setting(s) %s in %s. Valid settings: %s' %
                          (', '.join(unknown), path, ', '.join(PARAMETER_NAMES)))
    return values


def resolve(explicit_config=None, environ=None):
    """Merge built-in defaults, the config file and the environment.

    The result is used as the defaults of the command line parser, so flags
    given on the command line win over everything returned here.
    """
    environ = os.environ if environ is None else environ
    values = OrderedDict((name, default) for name, _, default, _ in PARAMETERS)
    kinds = dict((name, kind) for name, _, _, kind in PARAMETERS)

    path, required = config_path(explicit_config, environ)
    for name, raw in read_config(path, required).items():
        values[name] = coerce(name, kinds[name], raw, path)

    for name, env, _, kind in PARAMETERS:
        if env and environ.get(env, '').strip():
            values[name] = coerce(name, kind, environ[env], 'environment variable ' + env)

    return values


def key_value(arg):
    """Check that an argument is in the form KEY=VALUE"""
    parts = arg.split('=', 1)
    if len(parts) != 2 or not parts[0].strip():
        raise ValueError('%r is not a KEY=VALUE' % arg)
    return arg


def parse_tags(items):
    """Turn a list of KEY=VALUE strings into an ordered mapping"""
    tags = OrderedDict()
    for item in items or []:
        key, value = key_value(item).split('=', 1)
        tags[key.strip()] = value.strip()
    return tags


def subnet_cidrs(vpc_cidr, count):
    """Carve count consecutive /24 subnets out of the VPC network"""
    network = ipaddress.ip_network(vpc_cidr, strict=True)
    if network.prefixlen > SUBNET_PREFIX:
        raise ValueError('%s is smaller than a /%d' % (vpc_cidr, SUBNET_PREFIX))
    cidrs = []
    for subnet in network.subnets(new_prefix=SUBNET_PREFIX):
        if len(cidrs) == count:
            break
        cidrs.append(str(subnet))
    if len(cidrs) < count:
        raise ValueError('%s cannot hold %d /%d subnets' % (vpc_cidr, count, SUBNET_PREFIX))
    return cidrs


def check_dns_name(name):
    """A DNS name for the API endpoint needs a host label and a domain"""
    labels = name.rstrip('.').lower().split('.')
    if len(labels) < 2:
        return False
    return all(LABEL_RE.match(label) for label in labels)


def check_parameters(params):
    """Sanity check parameters that need no cloud access and fill derived defaults.

    params is the argparse.Namespace produced by the command line parser.
    """
    if not params.cluster_name or not LABEL_RE.match(params.cluster_name):
        raise DeployError('--cluster-name must be a lower case DNS label, got %r' %
                          params.cluster_name)

    for name in ('worker_count', 'controller_count', 'etcd_count',
                 'worker_root_volume_size', 'controller_root_volume_size',
                 'record_set_ttl', 'wait_minutes'):
        if getattr(params, name) <= 0:
            raise DeployError('--%s requires a positive value' % name.replace('_', '-'))

    if params.etcd_count % 2 == 0:
        raise DeployError('--etcd-count must be odd to keep an etcd quorum, got %d' %
                          params.etcd_count)

    if not params.external_dns_name:
        raise DeployError('--external-dns-name is required, e.g. kube.example.com')
    if not check_dns_name(params.external_dns_name):
        raise DeployError('%r is not a valid DNS name' % params.external_dns_name)
    params.external_dns_name = params.external_dns_name.rstrip('.').lower()

    if not params.key_name:
        raise DeployError('--key-name is required, see: list key-pairs')
    if not params.s3_bucket:
        raise DeployError('--s3-bucket is required, see: list buckets')

    if not params.zones:
        params.zones = [params.region + 'a']
    if len(set(params.zones)) != len(params.zones):
        raise DeployError('duplicate availability zones in %s' % ','.join(params.zones))

    try:
        params.subnet_cidrs = subnet_cidrs(params.vpc_cidr, len(params.zones))
    except ValueError as exc:
        raise DeployError('invalid --vpc-cidr: %s' % exc)

    try:
        params.stack_tags = parse_tags(params.tags)
    except ValueError as exc:
        raise DeployError('invalid --tag: %s' % exc)

    if not params.s3_prefix:
        params.s3_prefix = params.cluster_name
    params.s3_prefix = params.s3_prefix.strip('/')
    params.s3_uri = 's3://%s/%s' % (params.s3_bucket, params.s3_prefix)
    return params
