"""Tests for the Kubernetes access check and the cluster client behind it."""
import asyncio
import json

import httpx
import pytest
from kubernetes import client as k8s_client

from spi_oauth import kube
from spi_oauth.access_gate import TOKEN_DATA_UPDATE, check_access
from spi_oauth.errors import AccessCheckError
from spi_oauth.kube import ClusterClient, KubernetesApiError


def _cluster(handler) -> ClusterClient:
    cfg = k8s_client.Configuration()
    cfg.host = "https://kube.test"
    cfg.api_key = {"authorization": "service-account-token"}
    cfg.api_key_prefix = {"authorization": "Bearer"}
    return ClusterClient(cfg, transport=httpx.MockTransport(handler))


def test_review_is_made_as_the_caller():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"status": {"allowed": True}})

    allowed = asyncio.run(check_access(_cluster(handler), "user-token", "team-a"))

    assert allowed is True
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/apis/authorization.k8s.io/v1/selfsubjectaccessreviews"
    assert request.headers["Authorization"] == "Bearer user-token"
    body = json.loads(request.content)
    assert body["kind"] == "SelfSubjectAccessReview"
    assert body["spec"]["resourceAttributes"] == {
        "namespace": "team-a",
        "verb": "create",
        "group": "appstudio.redhat.com",
        "version": "v1beta1",
        "resource": "spiaccesstokendataupdates",
    }


def test_denied_review_returns_false():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"status": {"allowed": False, "reason": "no RBAC"}})

    assert asyncio.run(check_access(_cluster(handler), "user-token", "team-a")) is False


def test_review_without_status_is_not_allowed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={})

    assert asyncio.run(check_access(_cluster(handler), "user-token", "team-a", TOKEN_DATA_UPDATE)) is False


def test_api_error_is_a_check_failure_not_a_denial():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"kind": "Status", "message": "Unauthorized"})

    with pytest.raises(AccessCheckError) as exc:
        asyncio.run(check_access(_cluster(handler), "bad-token", "team-a"))
    assert exc.value.status_code == 500
    assert "Unauthorized" in exc.value.detail


def test_transport_error_is_a_check_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(AccessCheckError):
        asyncio.run(check_access(_cluster(handler), "user-token", "team-a"))


def test_get_access_token_as_user():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"metadata": {"name": "my-token", "namespace": "team-a", "uid": "u1"}})

    obj = asyncio.run(_cluster(handler).get_access_token("user-token", "team-a", "my-token"))

    assert obj["metadata"]["uid"] == "u1"
    assert seen[0].url.path == "/apis/appstudio.redhat.com/v1beta1/namespaces/team-a/spiaccesstokens/my-token"
    assert seen[0].headers["Authorization"] == "Bearer user-token"


def test_get_access_token_not_found():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "spiaccesstokens \"x\" not found"})

    with pytest.raises(KubernetesApiError) as exc:
        asyncio.run(_cluster(handler).get_access_token("user-token", "team-a", "x"))
    assert exc.value.status == 404


def test_secret_write_uses_service_account_and_replaces_on_conflict():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "POST":
            return httpx.Response(409, json={"message": "already exists"})
        return httpx.Response(200, json=json.loads(request.content))

    secret = {"metadata": {"name": "my-token-token-data", "namespace": "team-a"}}
    asyncio.run(_cluster(handler).create_or_replace_secret("team-a", secret))

    assert [r.method for r in seen] == ["POST", "PUT"]
    assert seen[1].url.path == "/api/v1/namespaces/team-a/secrets/my-token-token-data"
    assert all(r.headers["Authorization"] == "Bearer service-account-token" for r in seen)


class _RecordingContext:
    def __init__(self):
        self.cert_chains = []

    def load_cert_chain(self, certfile, keyfile=None, password=None):
        self.cert_chains.append((certfile, keyfile))


def test_user_calls_never_present_the_service_client_cert(monkeypatch):
    contexts = []

    def create_default_context(cafile=None):
        context = _RecordingContext()
        contexts.append(context)
        return context

    monkeypatch.setattr(kube.ssl, "create_default_context", create_default_context)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "POST" and "secrets" in request.url.path:
            return httpx.Response(201, json={})
        return httpx.Response(201, json={"status": {"allowed": True}})

    cfg = k8s_client.Configuration()
    cfg.host = "https://kube.test"
    cfg.cert_file = "/svc/client.crt"
    cfg.key_file = "/svc/client.key"
    cluster = ClusterClient(cfg, transport=httpx.MockTransport(handler))

    asyncio.run(check_access(cluster, "user-token", "team-a"))
    assert len(contexts) == 1
    assert contexts[0].cert_chains == []
    assert seen[0].headers["Authorization"] == "Bearer user-token"

    asyncio.run(cluster.create_or_replace_secret("team-a", {"metadata": {"name": "s", "namespace": "team-a"}}))
    assert len(contexts) == 2
    assert contexts[1].cert_chains == [("/svc/client.crt", "/svc/client.key")]
    assert "Authorization" not in seen[1].headers

    # The user client is reused and still has no client cert
    asyncio.run(check_access(cluster, "other-user", "team-a"))
    assert len(contexts) == 2
    assert contexts[0].cert_chains == []
