#!/usr/bin/env python3
"""Tests for common.py - shared utilities.

Tests verify:
1. run_command execution and error handling
2. ssh argument construction
3. unique() ordering and idempotence
4. Child process environment marker
"""

import os

from common import child_process_env, is_child_process, run_command, ssh_args, unique


class TestRunCommand:
    """Test run_command utility."""

    def test_returns_success_tuple(self):
        """Should return (returncode, stdout, stderr) on success."""
        rc, stdout, stderr = run_command(['echo', 'hello'])
        assert rc == 0
        assert 'hello' in stdout
        assert stderr == ''

    def test_returns_failure_tuple(self):
        rc, _, _ = run_command(['false'])
        assert rc != 0

    def test_respects_cwd(self, tmp_path):
        (tmp_path / 'marker.txt').write_text('found')
        rc, stdout, _ = run_command(['cat', 'marker.txt'], cwd=tmp_path)
        assert rc == 0
        assert 'found' in stdout

    def test_timeout_returns_error(self):
        rc, _, stderr = run_command(['sleep', '10'], timeout=1)
        assert rc == -1
        assert 'timed out' in stderr.lower()

    def test_missing_binary_returns_error(self):
        rc, _, stderr = run_command(['definitely-not-a-real-binary-xyz'])
        assert rc == -1
        assert stderr

    def test_passes_input(self):
        rc, stdout, _ = run_command(['cat'], input_data='piped')
        assert rc == 0
        assert stdout == 'piped'


class TestSSH:
    """SSH argument construction."""

    def test_ssh_args_with_key_and_port(self):
        args = ssh_args('127.0.0.1', port=32772, user='docker', key_path='/tmp/id_rsa')
        assert args[0] == 'ssh'
        assert args[-1] == 'docker@127.0.0.1'
        assert args[args.index('-p') + 1] == '32772'
        assert args[args.index('-i') + 1] == '/tmp/id_rsa'

    def test_ssh_args_without_key(self):
        assert '-i' not in ssh_args('10.0.0.5')


class TestUnique:
    """Deduplication used for engine env lists."""

    def test_keeps_first_seen_order(self):
        assert unique(['B=2', 'A=1', 'B=2', 'C=3', 'A=1']) == ['B=2', 'A=1', 'C=3']

    def test_idempotent(self):
        items = ['x', 'y', 'x', 'z', 'y']
        assert unique(unique(items)) == unique(items)

    def test_never_grows(self):
        for items in ([], ['a'], ['a', 'a'], ['a', 'b', 'c'], ['c', 'b', 'a', 'b']):
            assert len(unique(items)) <= len(items)

    def test_accepts_generators(self):
        assert unique(s for s in 'abca') == ['a', 'b', 'c']


class TestChildProcess:

    def test_child_env_sets_marker(self, monkeypatch):
        monkeypatch.delenv('IS_MINIKUBE_CHILD_PROCESS', raising=False)
        env = child_process_env()
        assert env['IS_MINIKUBE_CHILD_PROCESS'] == 'true'
        assert 'IS_MINIKUBE_CHILD_PROCESS' not in os.environ

    def test_detects_child(self, monkeypatch):
        monkeypatch.setenv('IS_MINIKUBE_CHILD_PROCESS', 'true')
        assert is_child_process()
        monkeypatch.setenv('IS_MINIKUBE_CHILD_PROCESS', 'false')
        assert not is_child_process()
