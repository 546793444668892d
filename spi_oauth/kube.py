"""
Kubernetes API access for the OAuth service.

Cluster endpoint, CA and the service account credentials come from the kubernetes client's
config loaders (in-cluster first, then kubeconfig). Requests themselves go through httpx.AsyncClient
so that cancelling the inbound request aborts them. Calls made "as" a user use a separate client
that carries only that user's bearer token: no service token and no service client certificate.
"""
import logging
import ssl
import threading
from typing import Any

import httpx
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

logger = logging.getLogger(__name__)

SPI_GROUP = "appstudio.redhat.com"
SPI_VERSION = "v1beta1"


class KubernetesApiError(Exception):
    def __init__(self, status: int | None, reason: str):
        self.status = status
        self.reason = reason
        super().__init__(f"{status}: {reason}" if status is not None else reason)


def load_cluster_configuration() -> k8s_client.Configuration:
    """Load in-cluster config, falling back to kubeconfig (local development)."""
    cfg = k8s_client.Configuration()
    try:
        k8s_config.load_incluster_config(client_configuration=cfg)
    except k8s_config.ConfigException:
        k8s_config.load_kube_config(client_configuration=cfg)
    return cfg


def _error_reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


class ClusterClient:
    def __init__(
        self,
        configuration: k8s_client.Configuration | None = None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._configuration = configuration
        self._timeout = timeout
        self._transport = transport
        self._user_http: httpx.AsyncClient | None = None
        self._service_http: httpx.AsyncClient | None = None
        self._init_lock = threading.Lock()

    def _config(self) -> k8s_client.Configuration:
        if self._configuration is None:
            with self._init_lock:
                if self._configuration is None:
                    self._configuration = load_cluster_configuration()
        return self._configuration

    def _tls(self, *, client_cert: bool) -> ssl.SSLContext | bool:
        cfg = self._config()
        if not cfg.verify_ssl:
            return False
        context = ssl.create_default_context(cafile=cfg.ssl_ca_cert or None)
        # The service's client certificate authenticates before any bearer token,
        # so it must only be presented on calls made as this service
        if client_cert and cfg.cert_file and cfg.key_file:
            context.load_cert_chain(cfg.cert_file, cfg.key_file)
        return context

    def _new_client(self, *, client_cert: bool) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config().host,
            verify=self._tls(client_cert=client_cert),
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    def _user_client(self) -> httpx.AsyncClient:
        """CA verification only; identity comes from the caller's bearer token."""
        if self._user_http is None:
            self._user_http = self._new_client(client_cert=False)
        return self._user_http

    def _service_client(self) -> httpx.AsyncClient:
        if self._service_http is None:
            self._service_http = self._new_client(client_cert=True)
        return self._service_http

    def _service_authorization(self) -> str | None:
        # Calls the refresh hook, so rotated in-cluster tokens are picked up
        return self._config().get_api_key_with_prefix("authorization")

    async def _request(self, method: str, path: str, *, credential: str | None, json: Any = None) -> dict:
        """credential=None means "as this service" (service account or kubeconfig identity)."""
        headers = {}
        if credential:
            http = self._user_client()
            authorization: str | None = f"Bearer {credential}"
        else:
            http = self._service_client()
            authorization = self._service_authorization()
        if authorization:
            headers["Authorization"] = authorization
        try:
            response = await http.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise KubernetesApiError(None, f"{method} {path} failed: {e}") from e
        if response.status_code >= 400:
            raise KubernetesApiError(response.status_code, _error_reason(response))
        try:
            return response.json()
        except ValueError as e:
            raise KubernetesApiError(response.status_code, f"invalid JSON from {method} {path}") from e

    async def create_self_subject_access_review(self, credential: str, resource_attributes: dict) -> dict:
        review = {
            "apiVersion": "authorization.k8s.io/v1",
            "kind": "SelfSubjectAccessReview",
            "spec": {"resourceAttributes": resource_attributes},
        }
        return await self._request(
            "POST",
            "/apis/authorization.k8s.io/v1/selfsubjectaccessreviews",
            credential=credential,
            json=review,
        )

    async def get_access_token(self, credential: str, namespace: str, name: str) -> dict:
        """Fetch an SPIAccessToken as the given user."""
        return await self._request(
            "GET",
            f"/apis/{SPI_GROUP}/{SPI_VERSION}/namespaces/{namespace}/spiaccesstokens/{name}",
            credential=credential,
        )

    async def create_or_replace_secret(self, namespace: str, secret: dict) -> dict:
        """Create the secret as this service; replace it if it already exists."""
        try:
            return await self._request("POST", f"/api/v1/namespaces/{namespace}/secrets", credential=None, json=secret)
        except KubernetesApiError as e:
            if e.status != 409:
                raise
        name = secret["metadata"]["name"]
        logger.debug("Secret %s/%s exists; replacing", namespace, name)
        return await self._request(
            "PUT", f"/api/v1/namespaces/{namespace}/secrets/{name}", credential=None, json=secret
        )

    async def aclose(self) -> None:
        for http in (self._user_http, self._service_http):
            if http is not None:
                await http.aclose()
        self._user_http = None
        self._service_http = None
