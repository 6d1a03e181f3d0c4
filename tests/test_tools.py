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

import subprocess

import pytest

from kubeaws_deploy import DeployError, tools


def fake_output(text, returncode=0):
    def check_output(cmd_list, **kwargs):
        if returncode:
            raise subprocess.CalledProcessError(returncode, cmd_list, output=text)
        return text
    return check_output


def test_validate_dependencies(monkeypatch, capsys):
    monkeypatch.setattr(tools.shutil, 'which', lambda name: '/usr/local/bin/' + name)
    tools.validate_dependencies()
    assert 'Dependencies are installed' in capsys.readouterr().out


def test_missing_dependency_is_named(monkeypatch):
    monkeypatch.setattr(tools.shutil, 'which',
                        lambda name: None if name == 'kubectl' else '/usr/bin/' + name)
    with pytest.raises(DeployError, match='not found in PATH: kubectl$'):
        tools.validate_dependencies()


@pytest.mark.parametrize('output, version', [
    ('kube-aws version v0.9.5\n', '0.9.5'),
    ('kube-aws version 0.10.2', '0.10.2'),
    ('no version here', None),
])
def test_kube_aws_version(monkeypatch, output, version):
    monkeypatch.setattr(tools.subprocess, 'check_output', fake_output(output))
    assert tools.kube_aws_version() == version


def test_kube_aws_version_command_failure(monkeypatch):
    monkeypatch.setattr(tools.subprocess, 'check_output', fake_output('boom', returncode=2))
    assert tools.kube_aws_version() is None
    with pytest.raises(DeployError, match='Unable to determine'):
        tools.validate_kube_aws_version()


@pytest.mark.parametrize('output', ['kube-aws version v0.9.4', 'kube-aws version v0.9.5\n'])
def test_supported_versions(monkeypatch, output):
    monkeypatch.setattr(tools.subprocess, 'check_output', fake_output(output))
    assert tools.validate_kube_aws_version() in ('0.9.4', '0.9.5')


def test_old_version_rejected(monkeypatch):
    monkeypatch.setattr(tools.subprocess, 'check_output', fake_output('kube-aws version v0.9.3'))
    with pytest.raises(DeployError, match='Minimum supported kube-aws version: 0.9.4, found 0.9.3'):
        tools.validate_kube_aws_version()


@pytest.mark.parametrize('version', ['0.9.6', '0.9.9', '0.9.10', '0.10.2'])
def test_node_pool_layout_versions_rejected(monkeypatch, version):
    # 0.9.10 sorts below 0.9.6 as a string
    monkeypatch.setattr(tools.subprocess, 'check_output',
                        fake_output('kube-aws version v%s' % version))
    with pytest.raises(DeployError, match='use a version before 0.9.6'):
        tools.validate_kube_aws_version()


def test_run_prints_execution_code(monkeypatch, capsys):
    calls = []

    def call(cmd_list, cwd=None, env=None):
        calls.append((cmd_list, cwd))
        return 3

    monkeypatch.setattr(tools.subprocess, 'call', call)
    assert tools.run(['kube-aws', 'status'], cwd='/tmp/demo') == 3
    assert calls == [(['kube-aws', 'status'], '/tmp/demo')]
    assert 'kube-aws execution code 3' in capsys.readouterr().out


def test_run_missing_binary(monkeypatch, capsys):
    def call(cmd_list, cwd=None, env=None):
        raise OSError(2, 'No such file or directory')

    monkeypatch.setattr(tools.subprocess, 'call', call)
    assert tools.run(['kube-aws', 'status']) == 127
    assert 'Unable to execute kube-aws' in capsys.readouterr().out


def test_check_output_quiet_failure(monkeypatch, capsys):
    monkeypatch.setattr(tools.subprocess, 'check_output', fake_output('refused', returncode=1))
    assert tools.check_output(['kubectl', 'get', 'nodes'], quiet=True) == (1, 'refused')
    assert capsys.readouterr().out == ''


def test_tool_env_selects_profile(monkeypatch):
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'AKIA')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'secret')
    env = tools.tool_env('staging', 'eu-west-1')
    assert env['AWS_PROFILE'] == 'staging'
    assert env['AWS_DEFAULT_REGION'] == env['AWS_REGION'] == 'eu-west-1'
    assert 'AWS_ACCESS_KEY_ID' not in env
    assert 'AWS_SECRET_ACCESS_KEY' not in env

    env = tools.tool_env('default', 'us-west-2')
    assert env['AWS_ACCESS_KEY_ID'] == 'AKIA'
