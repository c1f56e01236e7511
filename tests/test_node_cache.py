"""Tests for node/cache.py - artifact downloads alongside machine creation."""

from unittest.mock import MagicMock, patch

import pytest

import download
from config import ClusterConfig
from driver import kic
from driver.registry import Kind
from errors import ErrorKind, MinikubeError
from node import cache
from tasks import TaskGroup


def _auth_error(ref):
    return MinikubeError(ErrorKind.REGISTRY_AUTH_REQUIRED, f'pull {ref}: unauthorized')


def _fail(message):
    def fn():
        raise MinikubeError(ErrorKind.PROVISION, message)
    return fn


class TestBeginCacheImages:
    """Preload first, per-image caching as the fallback."""

    def test_preload_success_enqueues_nothing(self, settings):
        settings.preload = True
        settings.cache_images = True
        group = TaskGroup('cache-images')
        with patch('node.cache.download.preload_exists', return_value=True), \
                patch('node.cache.download.preload') as mock_preload:
            cache.begin_cache_images(group, '', 'v1.18.3', 'docker', settings)

        mock_preload.assert_called_once_with('v1.18.3', 'docker', settings.cache_dir)
        assert len(group) == 0

    def test_preload_failure_falls_back_to_images(self, settings):
        settings.preload = True
        settings.cache_images = True
        group = TaskGroup('cache-images')
        with patch('node.cache.download.preload_exists', return_value=True), \
                patch('node.cache.download.preload', side_effect=download.DownloadError('checksum mismatch')), \
                patch('node.cache.machine_cache.cache_images_for_bootstrapper') as mock_cache:
            cache.begin_cache_images(group, '', 'v1.18.3', 'docker', settings)
            group.wait()

        assert len(group) == 1
        mock_cache.assert_called_once_with('', 'v1.18.3', settings)

    def test_image_repository_skips_preload(self, settings):
        settings.preload = True
        settings.cache_images = True
        group = TaskGroup('cache-images')
        with patch('node.cache.download.preload_exists') as mock_exists, \
                patch('node.cache.machine_cache.cache_images_for_bootstrapper'):
            cache.begin_cache_images(group, 'registry.example.com', 'v1.18.3', 'docker', settings)
            group.wait()

        mock_exists.assert_not_called()
        assert len(group) == 1

    def test_caching_disabled(self, settings):
        group = TaskGroup('cache-images')
        cache.begin_cache_images(group, '', 'v1.18.3', 'docker', settings)
        assert len(group) == 0


class TestWaitCacheImages:

    def test_failures_are_logged_not_raised(self, settings):
        settings.cache_images = True
        group = TaskGroup('cache-images')
        group.go(lambda: 'ok', name='good')
        group.go(_fail('pull k8s.gcr.io/pause:3.2: timeout'), name='bad')
        on_error = MagicMock()

        cache.wait_cache_images(group, settings, on_error=on_error)

        on_error.assert_called_once()
        assert len(on_error.call_args[0][0].failures) == 1

    def test_disabled_skips_wait(self, settings):
        group = MagicMock()
        cache.wait_cache_images(group, settings)
        group.wait.assert_not_called()


class TestBaseImage:
    """KIC base image download with fallbacks."""

    def test_candidates_default(self):
        assert cache.base_image_candidates(ClusterConfig()) == [
            kic.BASE_IMAGE, kic.BASE_IMAGE_FALLBACK_1, kic.BASE_IMAGE_FALLBACK_2,
        ]

    def test_candidates_deduplicated(self):
        cc = ClusterConfig(kic_base_image=kic.BASE_IMAGE_FALLBACK_1)
        assert cache.base_image_candidates(cc) == [kic.BASE_IMAGE_FALLBACK_1, kic.BASE_IMAGE_FALLBACK_2]

    def test_falls_back_in_order(self):
        candidates = ['first', 'second', 'third']
        with patch('node.cache.image.write_image_to_daemon', side_effect=[
            MinikubeError(ErrorKind.PROVISION, 'pull first: timeout'),
            MinikubeError(ErrorKind.PROVISION, 'pull second: not found'),
            None,
        ]) as mock_pull:
            assert cache.pull_base_image(candidates) == 'third'

        assert [c[0][0] for c in mock_pull.call_args_list] == candidates

    def test_all_candidates_fail(self):
        def pull(ref, oci_binary):
            raise _auth_error(ref)

        with patch('node.cache.image.write_image_to_daemon', side_effect=pull):
            with pytest.raises(MinikubeError) as exc_info:
                cache.pull_base_image(['a', 'b'])
        assert exc_info.value.kind == ErrorKind.REGISTRY_AUTH_REQUIRED
        assert 'pull b' in str(exc_info.value)

    def test_non_docker_driver_skipped(self):
        group = TaskGroup('kic-artifacts')
        with patch('node.cache.image.exists_image_in_daemon') as mock_exists:
            cache.begin_download_kic_artifacts(group, ClusterConfig(driver='podman'), Kind.KIC)
        mock_exists.assert_not_called()
        assert len(group) == 0

    def test_image_already_local(self):
        group = TaskGroup('kic-artifacts')
        with patch('node.cache.image.exists_image_in_daemon', return_value=True):
            cache.begin_download_kic_artifacts(group, ClusterConfig(driver='docker'), Kind.KIC)
        assert len(group) == 0

    def test_pull_enqueued(self):
        group = TaskGroup('kic-artifacts')
        with patch('node.cache.image.exists_image_in_daemon', return_value=False), \
                patch('node.cache.image.write_image_to_daemon'):
            cache.begin_download_kic_artifacts(group, ClusterConfig(driver='docker'), Kind.KIC)
            assert cache.wait_download_kic_artifacts(group) == kic.BASE_IMAGE


class TestWaitDownloadKicArtifacts:

    def test_auth_failure_escalated(self):
        group = TaskGroup('kic-artifacts')

        def pull():
            err = _auth_error('docker.pkg.github.com/kubernetes/minikube/kicbase:v0.0.10')
            err.remediation = None
            raise err

        group.go(pull)

        with pytest.raises(MinikubeError) as exc_info:
            cache.wait_download_kic_artifacts(group)

        assert exc_info.value.kind == ErrorKind.REGISTRY_AUTH_REQUIRED
        assert exc_info.value.context == ['download kic artifacts']
        assert exc_info.value.remediation == cache.AUTH_REMEDIATION

    def test_other_failure_logged(self):
        group = TaskGroup('kic-artifacts')
        group.go(_fail('pull kicbase: connection reset'))
        assert cache.wait_download_kic_artifacts(group) is None

    def test_nothing_enqueued(self):
        assert cache.wait_download_kic_artifacts(TaskGroup('kic-artifacts')) is None


class TestHandleDownloadOnly:

    def test_not_download_only(self, settings):
        with patch('node.cache.machine_cache.cache_binaries_for_bootstrapper') as mock_binaries:
            assert not cache.handle_download_only(TaskGroup('a'), TaskGroup('b'), 'v1.18.3', settings)
        mock_binaries.assert_not_called()

    def test_downloads_everything(self, settings):
        settings.download_only = True
        with patch('node.cache.machine_cache.cache_binaries_for_bootstrapper') as mock_binaries, \
                patch('node.cache.cache_kubectl_binary') as mock_kubectl, \
                patch('node.cache.save_images_to_tar_from_config') as mock_save:
            assert cache.handle_download_only(TaskGroup('a'), TaskGroup('b'), 'v1.18.3', settings)

        mock_binaries.assert_called_once_with('v1.18.3', settings)
        mock_kubectl.assert_called_once_with('v1.18.3', settings)
        mock_save.assert_called_once_with(settings)

    def test_binary_failure(self, settings):
        settings.download_only = True
        with patch('node.cache.machine_cache.cache_binaries_for_bootstrapper',
                   side_effect=download.DownloadError('404 Not Found')):
            with pytest.raises(MinikubeError) as exc_info:
                cache.handle_download_only(TaskGroup('a'), TaskGroup('b'), 'v1.18.3', settings)
        assert str(exc_info.value) == 'Failed to cache binaries: 404 Not Found'


class TestSaveImagesFromConfig:

    def test_configured_images(self, settings):
        settings.global_config_file.parent.mkdir(parents=True)
        settings.global_config_file.write_text('cache:\n  redis:6: null\n')
        with patch('node.cache.image.save_to_dir') as mock_save:
            assert cache.save_images_to_tar_from_config(settings) == ['redis:6']
        mock_save.assert_called_once_with(['redis:6'], settings.image_cache_dir)

    def test_nothing_configured(self, settings):
        with patch('node.cache.image.save_to_dir') as mock_save:
            assert cache.save_images_to_tar_from_config(settings) == []
        mock_save.assert_not_called()
