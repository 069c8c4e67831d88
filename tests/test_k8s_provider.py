"""Tests for the Namespace lookup against a mocked Kubernetes client."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from dedicator.providers.k8s_provider import (
    DefaultK8sProvider,
    NamespaceLookup,
    NamespaceLookupError,
    NamespaceNotFound,
    get_k8s_provider,
    get_namespace,
)


def _mock_namespace(name, annotations):
    ns = MagicMock()
    ns.metadata.name = name
    ns.metadata.annotations = annotations
    return ns


def test_get_namespace_returns_annotations():
    with patch("dedicator.providers.k8s_provider._get_core_v1") as mock_core_v1:
        mock_api = MagicMock()
        mock_core_v1.return_value = mock_api
        mock_api.read_namespace.return_value = _mock_namespace(
            "team-a", {"k8s.smp.io/dedicated": "shared-pool", "other": "x"}
        )

        result = get_namespace("team-a")

        mock_api.read_namespace.assert_called_once_with(name="team-a")
        assert result.name == "team-a"
        assert result.annotations == {"k8s.smp.io/dedicated": "shared-pool", "other": "x"}


def test_get_namespace_handles_no_annotations():
    with patch("dedicator.providers.k8s_provider._get_core_v1") as mock_core_v1:
        mock_api = MagicMock()
        mock_core_v1.return_value = mock_api
        mock_api.read_namespace.return_value = _mock_namespace("team-a", None)

        result = get_namespace("team-a")

        assert result.annotations == {}


def test_get_namespace_maps_404_to_not_found():
    with patch("dedicator.providers.k8s_provider._get_core_v1") as mock_core_v1:
        mock_api = MagicMock()
        mock_core_v1.return_value = mock_api
        mock_api.read_namespace.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(NamespaceNotFound):
            get_namespace("missing")


def test_get_namespace_wraps_other_api_errors():
    with patch("dedicator.providers.k8s_provider._get_core_v1") as mock_core_v1:
        mock_api = MagicMock()
        mock_core_v1.return_value = mock_api
        mock_api.read_namespace.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(NamespaceLookupError) as exc_info:
            get_namespace("team-a")

        assert not isinstance(exc_info.value, NamespaceNotFound)
        assert "Forbidden" in str(exc_info.value)


def test_get_namespace_wraps_client_init_failures():
    with patch("dedicator.providers.k8s_provider._get_core_v1", side_effect=RuntimeError("no kubeconfig")):
        with pytest.raises(NamespaceLookupError) as exc_info:
            get_namespace("team-a")

        assert "no kubeconfig" in str(exc_info.value)


def test_get_namespace_requires_name():
    with pytest.raises(NamespaceLookupError):
        get_namespace("")


def test_default_provider_satisfies_protocol():
    provider = get_k8s_provider()
    assert isinstance(provider, DefaultK8sProvider)
    assert isinstance(provider, NamespaceLookup)
