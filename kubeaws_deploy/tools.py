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
Discovery and execution of the external command line tools
"""

import os
import re
import shutil
import subprocess

from packaging.version import InvalidVersion, Version

from kubeaws_deploy import DeployError

# global debug variable, set by --debug
DEBUG = False

KUBE_AWS = 'kube-aws'
KUBECTL = 'kubectl'

# supported kube-aws versions, [MIN, MAX). From 0.9.6 on, cluster.yaml moves
# the worker settings under worker.nodePools and no longer has top-level
# workerCount, controllerCount or etcdCount keys.
MIN_KUBE_AWS_VERSION = '0.9.4'
MAX_KUBE_AWS_VERSION = '0.9.6'


def which(name):
    """ equivalent of the which command
    """
    return shutil.which(name) is not None


def validate_dependencies():
    """check dependencies are in place
    """
    missing = [name for name in (KUBE_AWS, KUBECTL) if not which(name)]
    if missing:
        raise DeployError('Make sure %s and %s are installed, not found in PATH: %s' %
                          (KUBE_AWS, KUBECTL, ', '.join(missing)))
    print('Dependencies are installed')


def tool_env(profile, region):
    """Environment for kube-aws and kubectl, pointing the AWS SDK at the validated profile"""
    env = dict(os.environ)
    env['AWS_PROFILE'] = profile
    env['AWS_DEFAULT_REGION'] = region
    env['AWS_REGION'] = region
    # explicit keys would win over the profile inside the SDK
    if profile != 'default':
        env.pop('AWS_ACCESS_KEY_ID', None)
        env.pop('AWS_SECRET_ACCESS_KEY', None)
        env.pop('AWS_SESSION_TOKEN', None)
    return env


def run(cmd_list, cwd=None, env=None):
    """Run a command, streaming its output, and return the exit code"""
    print(cmd_list)
    try:
        retcode = subprocess.call(cmd_list, cwd=cwd, env=env)
    except OSError as exc:
        print('Unable to execute %s: %s' % (cmd_list[0], exc))
        retcode = 127
    print('%s execution code %d' % (cmd_list[0], retcode))
    return retcode


def check_output(cmd_list, cwd=None, env=None, quiet=False):
    """Run a command and capture its output.

    Returns (retcode, output). Output of a failed command is printed unless
    quiet is set, for commands that are expected to fail while polling.
    """
    if not quiet or DEBUG:
        print(cmd_list)
    retcode, data = 0, ''
    try:
        data = subprocess.check_output(cmd_list, cwd=cwd, env=env,
                                       stderr=subprocess.STDOUT, universal_newlines=True)
    except subprocess.CalledProcessError as exc:
        retcode = exc.returncode
        data = exc.output or ''
        if data and not quiet:
            print(data)
    except OSError as exc:
        retcode, data = 127, str(exc)
        if not quiet:
            print('Unable to execute %s: %s' % (cmd_list[0], exc))
    if DEBUG:
        print(data)
    return retcode, data


def kube_aws_version():
    """Return the installed kube-aws version string, or None if it cannot be determined"""
    retcode, data = check_output([KUBE_AWS, 'version'])
    if retcode != 0:
        return None
    match = re.search(r'version\s*v?([\d.]+)', data)
    if not match:
        return None
    return match.group(1)


def validate_kube_aws_version():
    """check to see if valid kube-aws version is being used
    """
    version = kube_aws_version()
    if version is None:
        raise DeployError('Unable to determine the kube-aws version')
    try:
        parsed = Version(version)
    except InvalidVersion:
        raise DeployError('Unrecognized kube-aws version %r' % version)
    if parsed < Version(MIN_KUBE_AWS_VERSION):
        raise DeployError('Minimum supported kube-aws version: %s, found %s' %
                          (MIN_KUBE_AWS_VERSION, version))
    if parsed >= Version(MAX_KUBE_AWS_VERSION):
        raise DeployError('kube-aws %s is not supported, use a version before %s' %
                          (version, MAX_KUBE_AWS_VERSION))
    print('kube-aws version %s' % version)
    return version
