#!/usr/bin/env python3
"""Tests for config.py - cluster configuration and profiles.

Tests verify:
1. Minikube home discovery (env var, default)
2. Machine names for control plane and workers
3. Validation rules, including names that could collide
4. Profile save/load round trip and global config.yaml
"""

import os
import sys
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from config import (
    ClusterConfig,
    ConfigError,
    KubernetesConfig,
    Node,
    Settings,
    delete_profile,
    get_minikube_home,
    image_cache_list,
    list_profiles,
    load_global_config,
    load_profile,
    machine_name,
    profile_exists,
    save_profile,
)


class TestGetMinikubeHome:
    """Minikube home discovery."""

    def test_env_var(self, tmp_path):
        with patch.dict(os.environ, {'MINIKUBE_HOME': str(tmp_path)}):
            assert get_minikube_home() == tmp_path

    def test_env_var_parent_of_dot_minikube(self, tmp_path):
        (tmp_path / '.minikube').mkdir()
        with patch.dict(os.environ, {'MINIKUBE_HOME': str(tmp_path)}):
            assert get_minikube_home() == tmp_path / '.minikube'

    def test_default(self, monkeypatch):
        monkeypatch.delenv('MINIKUBE_HOME', raising=False)
        assert get_minikube_home() == Path.home() / '.minikube'


class TestSettings:

    def test_paths(self, tmp_path):
        settings = Settings(minikube_home=str(tmp_path))
        assert settings.machines_dir == tmp_path / 'machines'
        assert settings.lock_dir == tmp_path / 'machines' / '.locks'
        assert settings.global_config_file == tmp_path / 'config' / 'config.yaml'

    def test_from_env_cache_images_off(self, minikube_home, monkeypatch):
        monkeypatch.setenv('MINIKUBE_CACHE_IMAGES', 'false')
        settings = Settings.from_env(download_only=True)
        assert settings.cache_images is False
        assert settings.download_only is True
        assert settings.minikube_home == minikube_home

    def test_defaults(self, minikube_home):
        settings = Settings.from_env()
        assert settings.lock_timeout == 900
        assert settings.create_timeout == 240


class TestMachineName:
    """Machine names for nodes."""

    def test_single_node_uses_cluster_name(self):
        cc = ClusterConfig(name='dev', nodes=[Node(name='')])
        assert machine_name(cc, cc.nodes[0]) == 'dev'

    def test_control_plane_uses_cluster_name(self):
        cc = ClusterConfig(name='dev', nodes=[Node(name=''), Node(name='m02', control_plane=False)])
        assert machine_name(cc, cc.nodes[0]) == 'dev'

    def test_worker_prefixed(self):
        cc = ClusterConfig(name='dev', nodes=[Node(name=''), Node(name='m02', control_plane=False)])
        assert machine_name(cc, cc.nodes[1]) == 'dev-m02'


class TestValidate:
    """ClusterConfig.validate()."""

    def _cluster(self, **changes):
        cc = ClusterConfig(name='dev', driver='docker', nodes=[Node(name='')])
        return cc.copy(**changes)

    def test_valid(self):
        self._cluster().validate()

    def test_cluster_name_that_looks_like_worker(self):
        """'dev-m02' would collide with worker m02 of cluster 'dev'."""
        with pytest.raises(ConfigError, match='reserved'):
            self._cluster(name='dev-m02').validate()

    def test_worker_name_must_be_mNN(self):
        cc = self._cluster(nodes=[Node(name=''), Node(name='worker1', control_plane=False)])
        with pytest.raises(ConfigError, match='worker node name'):
            cc.validate()

    def test_exactly_one_control_plane(self):
        cc = self._cluster(nodes=[Node(name=''), Node(name='m02', control_plane=True)])
        with pytest.raises(ConfigError, match='exactly one control-plane'):
            cc.validate()

    def test_memory_minimum(self):
        with pytest.raises(ConfigError, match='less than the usable minimum'):
            self._cluster(memory=512).validate()

    def test_unknown_runtime(self):
        cc = self._cluster(kubernetes_config=KubernetesConfig(container_runtime='rkt'))
        with pytest.raises(ConfigError, match='Invalid container runtime'):
            cc.validate()

    def test_invalid_profile_name(self):
        with pytest.raises(ConfigError, match='Invalid profile name'):
            self._cluster(name='-bad').validate()


class TestClusterConfigCopy:

    def test_copy_is_independent(self):
        cc = ClusterConfig(name='dev', docker_env=['A=1'], nodes=[Node(name='')])
        dup = cc.copy(kic_base_image='custom')
        dup.docker_env.append('B=2')
        dup.nodes[0].ip = '10.0.0.2'
        dup.kubernetes_config.kubernetes_version = 'v1.17.0'

        assert cc.kic_base_image == ''
        assert cc.docker_env == ['A=1']
        assert cc.nodes[0].ip == ''
        assert cc.kubernetes_config.kubernetes_version != 'v1.17.0'

    def test_copy_with_nodes_override(self):
        cc = ClusterConfig(name='dev', nodes=[Node(name='')])
        dup = cc.copy(nodes=[Node(name=''), Node(name='m02', control_plane=False)])
        assert len(dup.nodes) == 2
        assert len(cc.nodes) == 1


class TestProfiles:
    """Profile persistence."""

    def test_save_load_roundtrip(self, settings):
        cc = ClusterConfig(
            name='dev', driver='docker', docker_env=['A=1'],
            kubernetes_config=KubernetesConfig(kubernetes_version='v1.17.0', cluster_name='dev'),
            nodes=[Node(name='', ip='192.168.49.2'), Node(name='m02', control_plane=False)],
        )
        path = save_profile(cc, settings)

        assert path == settings.profiles_dir / 'dev' / 'config.yaml'
        assert load_profile('dev', settings) == cc

    def test_missing_profile(self, settings):
        with pytest.raises(ConfigError, match="Profile 'nope' not found"):
            load_profile('nope', settings)

    def test_list_and_delete(self, settings):
        save_profile(ClusterConfig(name='b'), settings)
        save_profile(ClusterConfig(name='a'), settings)
        assert list_profiles(settings) == ['a', 'b']
        delete_profile('a', settings)
        assert not profile_exists('a', settings)
        assert list_profiles(settings) == ['b']

    def test_invalid_yaml(self, settings):
        path = settings.profiles_dir / 'bad' / 'config.yaml'
        path.parent.mkdir(parents=True)
        path.write_text('name: [unclosed\n')
        with pytest.raises(ConfigError, match='Invalid profile'):
            load_profile('bad', settings)


class TestGlobalConfig:
    """config/config.yaml."""

    def test_missing_file(self, settings):
        assert load_global_config(settings) == {}

    def test_cache_images_from_map(self, settings):
        settings.global_config_file.parent.mkdir(parents=True)
        settings.global_config_file.write_text('cache:\n  redis:6: null\n  alpine:3.12: null\ndriver: docker\n')
        assert image_cache_list(settings) == ['alpine:3.12', 'redis:6']
        assert load_global_config(settings)['driver'] == 'docker'

    def test_no_cache_key(self, settings):
        settings.global_config_file.parent.mkdir(parents=True)
        settings.global_config_file.write_text('memory: 4096\n')
        assert image_cache_list(settings) == []

    def test_invalid_yaml(self, settings):
        settings.global_config_file.parent.mkdir(parents=True)
        settings.global_config_file.write_text('cache: [\n')
        with pytest.raises(ConfigError, match='Invalid YAML'):
            load_global_config(settings)
