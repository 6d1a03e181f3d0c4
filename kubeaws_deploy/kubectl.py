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
Readiness checks through kubectl and the kubeconfig written by kube-aws
"""

import datetime
import json
import os
import time

from kubeaws_deploy import tools

KUBECONFIG_FILE = 'kubeconfig'

# seconds between readiness polls
POLL_SEC = 60


# node labels kube-aws puts on controllers, which register as nodes too
CONTROLLER_LABELS = {
    'node-role.kubernetes.io/master': None,
    'kubernetes.io/role': 'master',
}


def kubeconfig_path(cluster_dir):
    return os.path.join(os.path.abspath(cluster_dir), KUBECONFIG_FILE)


def is_controller(node):
    labels = node.get('metadata', {}).get('labels') or {}
    for label, value in CONTROLLER_LABELS.items():
        if label in labels and (value is None or labels[label] == value):
            return True
    return False


def ready_nodes(nodes):
    """Names of the worker nodes whose Ready condition is True"""
    names = []
    for node in nodes.get('items', []):
        if is_controller(node):
            continue
        for condition in node.get('status', {}).get('conditions', []):
            if condition.get('type') == 'Ready' and condition.get('status') == 'True':
                names.append(node['metadata']['name'])
                break
    return names


def get_ready_nodes(cluster_dir, env=None):
    """Return the Ready worker names, or None while the API server cannot be reached"""
    cmd_list = [
        tools.KUBECTL,
        '--kubeconfig=%s' % kubeconfig_path(cluster_dir),
        'get', 'nodes', '-o', 'json'
    ]
    retcode, data = tools.check_output(cmd_list, env=env, quiet=True)
    if retcode != 0:
        return None
    try:
        return ready_nodes(json.loads(data))
    except ValueError:
        print('invalid JSON from', cmd_list)
        return None


def wait_for_nodes(cluster_dir, count, minutes, env=None):
    """Wait for up to minutes for at least count nodes to be Ready.

    The API endpoint only resolves once the stack and its DNS record exist,
    so failures are retried like not-ready nodes. Returns 0 when ready.
    """
    for attempt in range(1, minutes + 1):
        nodes = get_ready_nodes(cluster_dir, env)
        if nodes is not None and len(nodes) >= count:
            print('Ready nodes:', ', '.join(nodes))
            return 0
        state = 'API not reachable' if nodes is None else '%d/%d nodes ready' % (len(nodes), count)
        print('Waiting @', str(datetime.datetime.now()), state, 'count is', attempt, '/', minutes)
        if attempt < minutes:
            time.sleep(POLL_SEC)
    return 1
