"""
Cluster authorization pre-check: before a provider login may start, the caller's own
credential must be allowed to submit token data in the target namespace.
"""
import logging
from dataclasses import dataclass

from spi_oauth.errors import AccessCheckError
from spi_oauth.kube import SPI_GROUP, SPI_VERSION, ClusterClient, KubernetesApiError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationDescriptor:
    verb: str
    group: str
    version: str
    resource: str

    def resource_attributes(self, namespace: str) -> dict:
        return {
            "namespace": namespace,
            "verb": self.verb,
            "group": self.group,
            "version": self.version,
            "resource": self.resource,
        }


# The right to upload token data for an SPIAccessToken
TOKEN_DATA_UPDATE = OperationDescriptor(
    verb="create",
    group=SPI_GROUP,
    version=SPI_VERSION,
    resource="spiaccesstokendataupdates",
)


async def check_access(
    cluster: ClusterClient,
    credential: str,
    namespace: str,
    operation: OperationDescriptor = TOKEN_DATA_UPDATE,
) -> bool:
    """
    SelfSubjectAccessReview as the credential. Returns the review's allowed flag.
    Raises AccessCheckError when the review itself can't be performed; never returns False for that.
    """
    try:
        review = await cluster.create_self_subject_access_review(credential, operation.resource_attributes(namespace))
    except KubernetesApiError as e:
        raise AccessCheckError(e) from e
    status = review.get("status") or {}
    allowed = status.get("allowed") is True
    logger.debug(
        "self subject review result",
        extra={"namespace": namespace, "allowed": allowed, "reason": status.get("reason", "")},
    )
    return allowed
