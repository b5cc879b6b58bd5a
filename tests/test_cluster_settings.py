"""Unit tests for the cluster settings resource handler."""

import pytest

from errors import NotFoundError
from plugins.resources.cluster_settings import (
    ClusterSettingsResource,
    create_settings_request,
    update_settings_request,
)

IDP_CONFIG = {
    "identity_provider": "oidc",
    "identity_provider_client_id": "client",
    "identity_provider_client_secret": "shh",
    "identity_provider_url": "https://idp.example.com",
    "authenticate_service_url": "https://authenticate.example.com",
}


@pytest.fixture
def handler(mock_provider):
    resource = ClusterSettingsResource()
    resource.configure(mock_provider)
    return resource


@pytest.fixture
def settings_response():
    return {
        "id": "settings-doc-1",
        "address": ":443",
        "authenticateServiceUrl": "",
        "autoApplyChangesets": True,
        "cookieExpire": "14h",
        "cookieHttpOnly": True,
        "cookieName": "_pomerium",
        "defaultUpstreamTimeout": "30s",
        "dnsLookupFamily": "V4_ONLY",
        "identityProvider": "",
        "identityProviderClientId": None,
        "identityProviderUrl": "",
        "logLevel": "info",
        "passIdentityHeaders": None,
        "proxyLogLevel": "",
        "skipXffAppend": False,
        "timeoutIdle": "5m",
        "timeoutRead": "30s",
        "timeoutWrite": "0s",
        "tracingSampleRate": 0.5,
    }


class TestRequestBodies:
    """Tests for the create and update request mapping."""

    def test_create_omits_empty_values(self):
        body = create_settings_request(
            {
                "id": "cluster-1",
                "address": ":443",
                "cookie_name": "",
                "pass_identity_headers": False,
                "tracing_sample_rate": 0,
                "log_level": None,
            }
        )
        assert body == {"id": "cluster-1", "address": ":443"}

    def test_create_uses_camel_case(self):
        body = create_settings_request(
            {"id": "c", "dns_lookup_family": "V4_ONLY", "skip_xff_append": True}
        )
        assert body["dnsLookupFamily"] == "V4_ONLY"
        assert body["skipXffAppend"] is True

    def test_update_always_sends_flags_and_codec(self):
        body = update_settings_request({"id": "cluster-1"})
        assert body == {
            "passIdentityHeaders": False,
            "skipXffAppend": False,
            "codecType": "",
        }

    def test_update_sends_set_values(self):
        body = update_settings_request(
            {"id": "c", "address": ":8443", "codec_type": "http2", "timeout_read": ""}
        )
        assert body["address"] == ":8443"
        assert body["codecType"] == "http2"
        assert "timeoutRead" not in body
        assert "id" not in body

    def test_update_sends_empty_secret(self):
        """A set secret is sent even when empty; an unset one is not."""
        assert update_settings_request(
            {"identity_provider_client_secret": ""}
        )["identityProviderClientSecret"] == ""
        assert "identityProviderClientSecret" not in update_settings_request({})


class TestValidation:
    """Tests for identity provider validation."""

    def test_no_idp_fields_is_valid(self):
        valid, error = ClusterSettingsResource().validate_config({"id": "c"})
        assert valid is True
        assert error is None

    def test_all_idp_fields_is_valid(self):
        valid, _ = ClusterSettingsResource().validate_config(dict(IDP_CONFIG, id="c"))
        assert valid is True

    def test_partial_idp_fields_is_invalid(self):
        valid, error = ClusterSettingsResource().validate_config(
            {"id": "c", "identity_provider": "oidc"}
        )
        assert valid is False
        assert error.startswith("Invalid Identity Provider Configuration")

    def test_normalize_empty_proxy_log_level(self):
        config = ClusterSettingsResource().normalize_config({"proxy_log_level": ""})
        assert config["proxy_log_level"] is None


@pytest.mark.asyncio
class TestClusterSettingsResource:
    """Tests for CRUD against a mocked provider."""

    async def test_create_keeps_cluster_id(self, handler, mock_provider):
        mock_provider.request.return_value = {"id": "settings-doc-1"}

        state = await handler.create({"id": "cluster-1", "address": ":443"})

        mock_provider.request.assert_awaited_once_with(
            "POST",
            "/clusters/cluster-1/settings",
            expected_status=201,
            json_body={"id": "cluster-1", "address": ":443"},
        )
        assert state["id"] == "cluster-1"
        assert state["address"] == ":443"
        assert state["log_level"] is None

    async def test_read_maps_nulls(self, handler, mock_provider, settings_response):
        mock_provider.request.return_value = settings_response

        state = await handler.read({"id": "cluster-1", "codec_type": "auto"})

        mock_provider.request.assert_awaited_once_with(
            "GET", "/clusters/cluster-1/settings", expected_status=200
        )
        assert state["id"] == "cluster-1"
        assert state["address"] == ":443"
        assert state["auto_apply_changesets"] is True
        assert state["pass_identity_headers"] is False
        assert state["identity_provider"] is None
        assert state["identity_provider_client_id"] is None
        assert state["authenticate_service_url"] is None
        assert state["proxy_log_level"] is None
        assert state["identity_provider_client_secret"] is None
        assert state["tracing_sample_rate"] == 0.5
        assert state["codec_type"] == "auto"

    async def test_read_not_found(self, handler, mock_provider):
        mock_provider.request.side_effect = NotFoundError("gone")
        assert await handler.read({"id": "cluster-1"}) is None

    async def test_update(self, handler, mock_provider, settings_response):
        mock_provider.request.return_value = settings_response

        state = await handler.update(
            {"id": "cluster-1", "address": ":443", "codec_type": "http1"},
            {"id": "cluster-1"},
        )

        args, kwargs = mock_provider.request.call_args
        assert args == ("PUT", "/clusters/cluster-1/settings")
        assert kwargs["expected_status"] == 200
        assert kwargs["json_body"]["codecType"] == "http1"
        assert state["id"] == "cluster-1"
        assert state["codec_type"] == "http1"

    async def test_delete(self, handler, mock_provider):
        mock_provider.request.return_value = None
        await handler.delete({"id": "cluster-1"})
        mock_provider.request.assert_awaited_once_with(
            "DELETE", "/clusters/cluster-1/settings", expected_status=204
        )

    async def test_import(self, handler, mock_provider, settings_response):
        mock_provider.request.return_value = settings_response
        state = await handler.import_state("cluster-1")
        assert state["id"] == "cluster-1"
        assert state["codec_type"] is None

    async def test_import_missing(self, handler, mock_provider):
        mock_provider.request.side_effect = NotFoundError()
        with pytest.raises(NotFoundError, match="Unable to read cluster settings"):
            await handler.import_state("cluster-1")
