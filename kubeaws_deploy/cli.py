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
Wrapper script for the 'kube-aws' command

Dependencies
- pip install -e .
- kube-aws and kubectl installed and in the PATH
- an AWS profile (or credentials in the environment) allowed to manage
  EC2, CloudFormation, Route 53, S3, KMS and IAM

Overall flow of 'up'
- Check for kube-aws/kubectl installation and the kube-aws version
- Merge parameters from the command line, environment and config file
- Validate profile, region, zones, key pair, hosted zone, bucket and KMS key
  against the account, importing the key pair or creating the bucket and
  KMS key when asked to
- kube-aws init, then patch cluster.yaml with the cluster parameters
- kube-aws render credentials / render stack / validate
- kube-aws up
- Wait for the worker nodes to be Ready (kubectl get nodes)
"""

import argparse
import os
import shutil
import sys

from kubeaws_deploy import DeployError, __version__
from kubeaws_deploy import aws, descriptor, kubeaws, kubectl, settings, tools

PROG = 'kubeaws-deploy'

LIST_RESOURCES = ['profiles', 'regions', 'zones', 'key-pairs', 'hosted-zones',
                  'buckets', 'kms-keys']


def fail(message, *hints):
    """Print recovery hints and stop the command"""
    for hint in hints:
        print(hint)
    raise DeployError(message)


def cluster_dir_of(args):
    return os.path.join(args.assets_dir, args.cluster_name)


def open_session(args):
    """Validate the profile and return a session, filling in the region if unset"""
    aws.validate_profile(args.profile)
    session = aws.new_session(args.profile, args.region)
    if not args.region:
        args.region = session.region_name or settings.DEFAULT_REGION
        session = aws.new_session(args.profile, args.region)
    return session


def validate_parameters(args, session, create=True):
    """Check every parameter against the account.

    Sets args.hosted_zone_id, args.hosted_zone and args.kms_key_arn. With
    create=False nothing is created or imported.
    """
    settings.check_parameters(args)
    aws.validate_credentials(session)
    aws.validate_region(session, args.region)
    aws.validate_zones(session, args.region, args.zones)
    aws.validate_key_pair(session, args.region, args.key_name,
                          args.ssh_public_key if create else None)
    args.hosted_zone_id, args.hosted_zone = aws.resolve_hosted_zone(
        session, args.external_dns_name, args.hosted_zone, args.hosted_zone_id)
    aws.validate_bucket(session, args.s3_bucket, args.region, create and args.create_bucket)
    args.kms_key_arn = aws.resolve_kms_key(session, args.region, args.kms_key,
                                           args.cluster_name, create and args.create_kms_key)


def print_start_summary(args):
    """Display summary of starting environment
    """
    print('Starting operations with these parameters:')
    print('Cluster:', args.cluster_name)
    print('Profile:', args.profile)
    print('Region:', args.region or '(from profile)')
    print('Zones:', ','.join(args.zones) if args.zones else '(default)')
    print('External DNS name:', args.external_dns_name)
    print('Key pair:', args.key_name)
    print('Bucket:', args.s3_bucket)
    print('Controllers: %d x %s' % (args.controller_count, args.controller_instance_type))
    print('Workers: %d x %s' % (args.worker_count, args.worker_instance_type))
    print('Etcd: %d x %s' % (args.etcd_count, args.etcd_instance_type))
    print('Assets directory:', os.path.abspath(cluster_dir_of(args)))


def print_resolved(args):
    """Display the parameters after validation"""
    print('Resolved parameters:')
    print('  region:', args.region)
    print('  zones:', ','.join(args.zones))
    print('  subnets:', ','.join(args.subnet_cidrs))
    print('  hosted zone: %s (%s)' % (args.hosted_zone_id, args.hosted_zone))
    print('  KMS key:', args.kms_key_arn)
    print('  S3 URI:', args.s3_uri)
    if args.stack_tags:
        print('  tags:', ', '.join('%s=%s' % item for item in args.stack_tags.items()))


def summary_message(args, cluster_dir):
    """Display summary message with the cluster access details
    """
    config = kubectl.kubeconfig_path(cluster_dir)
    print()
    print('=====================================================================================')
    print('Cluster name:', args.cluster_name)
    print('API endpoint: https://%s' % args.external_dns_name)
    print('Assets directory:', os.path.abspath(cluster_dir))
    print('Assets in S3:', args.s3_uri)
    print('KUBECONFIG=%s' % config)
    print()
    print('Keep the assets directory, its credentials/ are needed to manage the cluster.')
    print('To access the cluster run')
    print('   kubectl --kubeconfig=%s get nodes' % config)
    print('To tear the cluster down run')
    print('   %s destroy --cluster-name=%s --assets-dir=%s' %
          (PROG, args.cluster_name, args.assets_dir))


def check_new_cluster_dir(args):
    """Refuse to reuse an asset directory that has a cluster.yaml"""
    cluster_dir = cluster_dir_of(args)
    if os.path.exists(os.path.join(cluster_dir, descriptor.DESCRIPTOR_FILE)):
        fail('cluster assets already exist in %s' % cluster_dir,
             'Destroy the old cluster with',
             '# %s destroy --cluster-name=%s --assets-dir=%s --purge' %
             (PROG, args.cluster_name, args.assets_dir),
             'or remove the directory, and retry.')
    return cluster_dir


def prepare_cluster_dir(args):
    """Create the asset directory of a new cluster"""
    cluster_dir = check_new_cluster_dir(args)
    try:
        os.makedirs(cluster_dir, exist_ok=True)
    except OSError as exc:
        raise DeployError('Unable to create %s: %s' % (cluster_dir, exc))
    return cluster_dir


def existing_cluster_dir(args):
    """The asset directory of a cluster created earlier"""
    cluster_dir = cluster_dir_of(args)
    if not os.path.exists(os.path.join(cluster_dir, descriptor.DESCRIPTOR_FILE)):
        raise DeployError('no %s in %s, check --cluster-name and --assets-dir' %
                          (descriptor.DESCRIPTOR_FILE, cluster_dir))
    return cluster_dir


def descriptor_region(cluster_dir):
    """The region recorded in an existing cluster.yaml"""
    data = descriptor.ClusterDescriptor.load(
        os.path.join(cluster_dir, descriptor.DESCRIPTOR_FILE)).parse()
    region = data.get('region')
    if not region:
        raise DeployError('no region in %s' % os.path.join(cluster_dir, descriptor.DESCRIPTOR_FILE))
    return region


def prepare(args):
    """Common first half of 'up' and 'render': checks and validation"""
    print_start_summary(args)
    print('===> Checking dependencies')
    tools.validate_dependencies()
    tools.validate_kube_aws_version()

    print('===> Validating parameters')
    session = open_session(args)
    validate_parameters(args, session)
    print_resolved(args)
    return tools.tool_env(args.profile, args.region)


def render_assets(args, cluster_dir, env):
    """kube-aws init, cluster.yaml customization, render and validate"""
    print('===> Initializing cluster.yaml')
    if kubeaws.launch_init(cluster_dir, args, env) != 0:
        fail('kube-aws init failed, unable to continue')

    print('===> Editing cluster.yaml')
    if descriptor.patch_descriptor(
            os.path.join(cluster_dir, descriptor.DESCRIPTOR_FILE), args) != 0:
        fail('editing cluster.yaml failed, unable to continue')

    print('===> Rendering credentials')
    if kubeaws.render_credentials(cluster_dir, env) != 0:
        fail('kube-aws render credentials failed, unable to continue')

    print('===> Rendering stack')
    if kubeaws.render_stack(cluster_dir, env) != 0:
        fail('kube-aws render stack failed, unable to continue')

    print('===> Validating stack')
    if kubeaws.validate(cluster_dir, args.s3_uri, env) != 0:
        fail('kube-aws validate failed',
             'Correct %s and rerun:' % os.path.join(cluster_dir, descriptor.DESCRIPTOR_FILE),
             '# cd %s && kube-aws validate --s3-uri=%s' % (cluster_dir, args.s3_uri))


def cmd_up(args):
    """Create the cluster"""
    # before validation, which may create AWS resources
    check_new_cluster_dir(args)
    env = prepare(args)
    cluster_dir = prepare_cluster_dir(args)
    render_assets(args, cluster_dir, env)

    if args.export:
        print('===> Exporting stack template')
        if kubeaws.launch_up(cluster_dir, args.s3_uri, True, env) != 0:
            fail('kube-aws up --export failed')
        print('CloudFormation template written to %s' %
              os.path.join(cluster_dir, '%s.stack-template.json' % args.cluster_name))
        return 0

    print('===> Launching cluster')
    if kubeaws.launch_up(cluster_dir, args.s3_uri, False, env) != 0:
        fail('kube-aws up failed to create the cluster',
             'Check the CloudFormation events of stack %s, then delete it with' % args.cluster_name,
             '# %s destroy --cluster-name=%s --assets-dir=%s' %
             (PROG, args.cluster_name, args.assets_dir))

    print('===> Waiting for nodes')
    if kubectl.wait_for_nodes(cluster_dir, args.worker_count, args.wait_minutes, env) != 0:
        fail('Cluster never became ready',
             'You can check cluster readiness with:',
             '# kubectl --kubeconfig=%s get nodes' % kubectl.kubeconfig_path(cluster_dir))

    summary_message(args, cluster_dir)
    return 0


def cmd_render(args):
    """Generate and validate the cluster assets without launching them"""
    # before validation, which may create AWS resources
    check_new_cluster_dir(args)
    env = prepare(args)
    cluster_dir = prepare_cluster_dir(args)
    render_assets(args, cluster_dir, env)
    print()
    print('Assets rendered in', os.path.abspath(cluster_dir))
    print('To launch the cluster run')
    print('   cd %s && kube-aws up --s3-uri=%s' % (cluster_dir, args.s3_uri))
    return 0


def cmd_update(args):
    """Apply worker changes and cluster.yaml edits to a running cluster"""
    cluster_dir = existing_cluster_dir(args)
    if not args.s3_bucket:
        raise DeployError('--s3-bucket is required')
    s3_uri = 's3://%s/%s' % (args.s3_bucket, (args.s3_prefix or args.cluster_name).strip('/'))
    if not args.region:
        args.region = descriptor_region(cluster_dir)
    aws.validate_profile(args.profile)
    env = tools.tool_env(args.profile, args.region)

    values = {}
    if args.worker_count is not None:
        if args.worker_count <= 0:
            raise DeployError('--worker-count requires a positive value')
        values['workerCount'] = args.worker_count
    if args.worker_instance_type:
        values['workerInstanceType'] = args.worker_instance_type
    if values:
        print('===> Editing cluster.yaml')
        if descriptor.update_descriptor(
                os.path.join(cluster_dir, descriptor.DESCRIPTOR_FILE), values) != 0:
            fail('editing cluster.yaml failed, unable to continue')

    print('===> Rendering stack')
    if kubeaws.render_stack(cluster_dir, env) != 0:
        fail('kube-aws render stack failed, unable to continue')
    print('===> Validating stack')
    if kubeaws.validate(cluster_dir, s3_uri, env) != 0:
        fail('kube-aws validate failed, the cluster was not changed')
    print('===> Updating cluster')
    if kubeaws.launch_update(cluster_dir, s3_uri, env) != 0:
        fail('kube-aws update failed',
             'Check the CloudFormation events of stack %s' % args.cluster_name)
    return 0


def cmd_status(args):
    cluster_dir = existing_cluster_dir(args)
    region = args.region or descriptor_region(cluster_dir)
    if kubeaws.status(cluster_dir, tools.tool_env(args.profile, region)) != 0:
        raise DeployError('kube-aws status failed')
    return 0


def cmd_destroy(args):
    """Tear the cluster down, optionally removing its assets"""
    cluster_dir = existing_cluster_dir(args)
    region = args.region or descriptor_region(cluster_dir)
    print('===> Destroying cluster', args.cluster_name)
    if kubeaws.destroy(cluster_dir, tools.tool_env(args.profile, region)) != 0:
        fail('kube-aws destroy failed',
             'Delete the CloudFormation stack %s in %s manually' % (args.cluster_name, region))
    if args.purge:
        print('Removing', cluster_dir)
        try:
            shutil.rmtree(cluster_dir)
        except OSError as exc:
            raise DeployError('Unable to remove %s: %s' % (cluster_dir, exc))
    else:
        print('Assets kept in', os.path.abspath(cluster_dir))
    return 0


def cmd_validate(args):
    """Validate the parameters against the account without changing anything"""
    print_start_summary(args)
    session = open_session(args)
    validate_parameters(args, session, create=False)
    print_resolved(args)
    return 0


def cmd_list(args):
    """Print the available values of one kind of resource"""
    if args.resource == 'profiles':
        items = aws.list_profiles()
    else:
        session = open_session(args)
        if args.resource == 'regions':
            items = aws.list_regions(session)
        elif args.resource == 'zones':
            items = aws.list_zones(session, args.region)
        elif args.resource == 'key-pairs':
            items = aws.list_key_pairs(session, args.region)
        elif args.resource == 'hosted-zones':
            items = ['%s %s%s' % (zone['id'], zone['name'], ' (private)' if zone['private'] else '')
                     for zone in aws.list_hosted_zones(session)]
        elif args.resource == 'buckets':
            items = aws.list_buckets(session)
        else:
            items = ['%s %s' % (arn, ','.join(names))
                     for arn, names in aws.list_kms_keys(session, args.region)]
    for item in items:
        print(item.rstrip())
    return 0


def add_switch(parser, name, default, help_text):
    """--name and --no-name, so a default from the config file can be turned off"""
    dest = name.replace('-', '_')
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--' + name, dest=dest, action='store_true', default=default,
                       help=help_text)
    group.add_argument('--no-' + name, dest=dest, action='store_false', default=default,
                       help='do not ' + help_text)


def add_cluster_args(parser, defaults):
    """Arguments identifying the cluster and the AWS account"""
    parser.add_argument(
        '--cluster-name', help='name of the cluster', default=defaults['cluster_name'])
    parser.add_argument('--profile', help='AWS profile', default=defaults['profile'])
    parser.add_argument(
        '--region', help="AWS region. If not specified the profile's region is used",
        default=defaults['region'])
    parser.add_argument(
        '--assets-dir', help='directory holding one asset directory per cluster',
        default=defaults['assets_dir'])


def add_s3_args(parser, defaults):
    parser.add_argument(
        '--s3-bucket', help='bucket for the kube-aws assets', default=defaults['s3_bucket'])
    parser.add_argument(
        '--s3-prefix', help='key prefix in the bucket. If not specified the cluster name is used',
        default=defaults['s3_prefix'])


def add_create_args(parser, defaults):
    """Arguments describing a new cluster"""
    add_s3_args(parser, defaults)
    parser.add_argument(
        '--zones', type=settings.to_list, default=defaults['zones'],
        help="comma separated availability zones. If not specified the 'a' zone of the "
        "--region is used")
    parser.add_argument(
        '--key-name', help='EC2 key pair for SSH access', default=defaults['key_name'])
    parser.add_argument(
        '--ssh-public-key', default=defaults['ssh_public_key'],
        help='public key file imported as --key-name if that key pair does not exist')
    parser.add_argument(
        '--external-dns-name', default=defaults['external_dns_name'],
        help='DNS name of the API endpoint, e.g. kube.example.com')
    parser.add_argument(
        '--hosted-zone', default=defaults['hosted_zone'],
        help='Route 53 zone for --external-dns-name. If not specified the closest '
        'public zone containing the name is used')
    parser.add_argument(
        '--hosted-zone-id', help='Route 53 zone id, instead of --hosted-zone',
        default=defaults['hosted_zone_id'])
    parser.add_argument(
        '--kms-key', help='ARN, id or alias of the KMS key encrypting the credentials',
        default=defaults['kms_key'])
    add_switch(parser, 'create-bucket', defaults['create_bucket'],
               'create --s3-bucket if it does not exist')
    add_switch(parser, 'create-kms-key', defaults['create_kms_key'],
               'create a KMS key when --kms-key is not given')
    parser.add_argument(
        '--worker-count', help='number of worker nodes', type=int,
        default=defaults['worker_count'])
    parser.add_argument(
        '--worker-instance-type', help='instance type of the worker nodes',
        default=defaults['worker_instance_type'])
    parser.add_argument(
        '--worker-root-volume-size', help='root volume size of the worker nodes in GiB',
        type=int, default=defaults['worker_root_volume_size'])
    parser.add_argument(
        '--worker-spot-price', help='bid for spot worker instances in dollars',
        default=defaults['worker_spot_price'])
    parser.add_argument(
        '--controller-count', help='number of controller nodes', type=int,
        default=defaults['controller_count'])
    parser.add_argument(
        '--controller-instance-type', help='instance type of the controller nodes',
        default=defaults['controller_instance_type'])
    parser.add_argument(
        '--controller-root-volume-size', help='root volume size of the controllers in GiB',
        type=int, default=defaults['controller_root_volume_size'])
    parser.add_argument(
        '--etcd-count', help='number of etcd nodes, odd', type=int,
        default=defaults['etcd_count'])
    parser.add_argument(
        '--etcd-instance-type', help='instance type of the etcd nodes',
        default=defaults['etcd_instance_type'])
    parser.add_argument('--vpc-cidr', help='CIDR of the new VPC', default=defaults['vpc_cidr'])
    parser.add_argument(
        '--kubernetes-version', help='hyperkube image tag. If not specified the kube-aws '
        'default is used', default=defaults['kubernetes_version'])
    add_switch(parser, 'use-calico', defaults['use_calico'], 'use Calico for network policy')
    parser.add_argument(
        '--tag', dest='tags', metavar='KEY=VALUE', action='append', type=settings.key_value,
        help='stack tag, may be repeated. Replaces the configured tags')
    parser.add_argument(
        '--record-set-ttl', help='TTL of the API endpoint record set in seconds', type=int,
        default=defaults['record_set_ttl'])
    parser.add_argument(
        '--wait-minutes', help='minutes to wait for the nodes to be Ready', type=int,
        default=defaults['wait_minutes'])


def make_parser_args(defaults):
    """Create parser arguments"""
    formatter = argparse.ArgumentDefaultsHelpFormatter
    parser = argparse.ArgumentParser(prog=PROG, description="Wrapper for 'kube-aws' commands",
                                     formatter_class=formatter)
    parser.add_argument(
        '--config', help='INI file with a [cluster] section of default parameters. If not '
        'specified $%s or %s is read' % (settings.CONFIG_FILE_ENV, settings.DEFAULT_CONFIG_FILE))
    parser.add_argument('--debug', help='print the output of every command', action='store_true')
    parser.add_argument('--version', action='version', version='%(prog)s ' + __version__)
    subparsers = parser.add_subparsers(dest='command', metavar='command')
    subparsers.required = True

    up_parser = subparsers.add_parser('up', help='create a cluster', formatter_class=formatter)
    add_cluster_args(up_parser, defaults)
    add_create_args(up_parser, defaults)
    up_parser.add_argument(
        '--export', action='store_true',
        help='only write the CloudFormation template, do not create the stack')
    up_parser.set_defaults(func=cmd_up)

    render_parser = subparsers.add_parser(
        'render', help='render and validate the cluster assets without launching',
        formatter_class=formatter)
    add_cluster_args(render_parser, defaults)
    add_create_args(render_parser, defaults)
    render_parser.set_defaults(func=cmd_render)

    validate_parser = subparsers.add_parser(
        'validate', help='check the parameters against the AWS account',
        formatter_class=formatter)
    add_cluster_args(validate_parser, defaults)
    add_create_args(validate_parser, defaults)
    validate_parser.set_defaults(func=cmd_validate)

    update_parser = subparsers.add_parser(
        'update', help='apply cluster.yaml changes to a running cluster',
        formatter_class=formatter)
    add_cluster_args(update_parser, defaults)
    add_s3_args(update_parser, defaults)
    update_parser.add_argument('--worker-count', type=int, help='new number of worker nodes')
    update_parser.add_argument('--worker-instance-type', help='new worker instance type')
    update_parser.set_defaults(func=cmd_update)

    status_parser = subparsers.add_parser(
        'status', help='show the cluster stack status', formatter_class=formatter)
    add_cluster_args(status_parser, defaults)
    status_parser.set_defaults(func=cmd_status)

    destroy_parser = subparsers.add_parser(
        'destroy', help='delete the cluster stack', formatter_class=formatter)
    add_cluster_args(destroy_parser, defaults)
    destroy_parser.add_argument(
        '--purge', action='store_true', help='also remove the asset directory')
    destroy_parser.set_defaults(func=cmd_destroy)

    list_parser = subparsers.add_parser(
        'list', help='list the values available in the account', formatter_class=formatter)
    add_cluster_args(list_parser, defaults)
    list_parser.add_argument('resource', choices=LIST_RESOURCES)
    list_parser.set_defaults(func=cmd_list)
    return parser


def main(argv=None):
    """main"""
    preparser = argparse.ArgumentParser(add_help=False, allow_abbrev=False)
    preparser.add_argument('--config')
    known, _ = preparser.parse_known_args(argv)
    try:
        defaults = settings.resolve(known.config)
    except DeployError as exc:
        print('Error: %s' % exc, file=sys.stderr)
        return 1

    args = make_parser_args(defaults).parse_args(argv)
    # append would extend a list default, so configured tags apply only without --tag
    if 'tags' in vars(args) and args.tags is None:
        args.tags = defaults['tags']
    tools.DEBUG = args.debug
    try:
        return args.func(args)
    except DeployError as exc:
        print('Error: %s' % exc, file=sys.stderr)
        return 1


# launch the program
if __name__ == '__main__':
    sys.exit(main())
