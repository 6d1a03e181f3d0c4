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
The kube-aws steps. Each one runs in the cluster asset directory and returns
the kube-aws exit code.
"""

from kubeaws_deploy import tools


def launch_init(cluster_dir, params, env=None):
    """Launch the command to generate cluster.yaml"""
    cmd_list = [
        tools.KUBE_AWS,
        'init',
        '--cluster-name=%s' % params.cluster_name,
        '--external-dns-name=%s' % params.external_dns_name,
        '--region=%s' % params.region,
        '--availability-zone=%s' % params.zones[0],
        '--key-name=%s' % params.key_name,
        '--kms-key-arn=%s' % params.kms_key_arn,
        '--hosted-zone-id=%s' % params.hosted_zone_id,
    ]
    return tools.run(cmd_list, cwd=cluster_dir, env=env)


def render_credentials(cluster_dir, env=None):
    """Generate a CA and the TLS assets under credentials/"""
    cmd_list = [tools.KUBE_AWS, 'render', 'credentials', '--generate-ca']
    return tools.run(cmd_list, cwd=cluster_dir, env=env)


def render_stack(cluster_dir, env=None):
    """Render the userdata and CloudFormation stack template"""
    cmd_list = [tools.KUBE_AWS, 'render', 'stack']
    return tools.run(cmd_list, cwd=cluster_dir, env=env)


def validate(cluster_dir, s3_uri, env=None):
    cmd_list = [tools.KUBE_AWS, 'validate', '--s3-uri=%s' % s3_uri]
    return tools.run(cmd_list, cwd=cluster_dir, env=env)


def launch_up(cluster_dir, s3_uri, export=False, env=None):
    """ Launch kube-aws up
    export only writes the CloudFormation template instead of creating the stack
    """
    cmd_list = [tools.KUBE_AWS, 'up', '--s3-uri=%s' % s3_uri]
    if export:
        cmd_list.extend(['--export', '--pretty-print'])
    return tools.run(cmd_list, cwd=cluster_dir, env=env)


def launch_update(cluster_dir, s3_uri, env=None):
    cmd_list = [tools.KUBE_AWS, 'update', '--s3-uri=%s' % s3_uri]
    return tools.run(cmd_list, cwd=cluster_dir, env=env)


def status(cluster_dir, env=None):
    return tools.run([tools.KUBE_AWS, 'status'], cwd=cluster_dir, env=env)


def destroy(cluster_dir, env=None):
    """Delete the CloudFormation stack of the cluster"""
    return tools.run([tools.KUBE_AWS, 'destroy'], cwd=cluster_dir, env=env)
