"""
Pending OAuth flows kept in the browser session (flow key -> cluster credential).
The credential never leaves the server; only the flow key travels in the OAuth state.
One session can hold several pending flows (tabs, providers) at once.
"""
from spi_oauth.errors import SessionCodecError
from spi_oauth.session import Session

FLOWS_KEY = "flows"


def _flows(session: Session) -> dict[str, str]:
    try:
        flows = session.get_object(FLOWS_KEY, {})
    except (TypeError, ValueError) as e:
        raise SessionCodecError(e) from e
    if not isinstance(flows, dict):
        raise SessionCodecError("flows is not an object")
    return flows


def _save(session: Session, flows: dict[str, str]) -> None:
    try:
        session.put_object(FLOWS_KEY, flows)
    except (TypeError, ValueError) as e:
        raise SessionCodecError(e) from e


def put_flow(session: Session, flow_key: str, credential: str) -> None:
    flows = _flows(session)
    flows[flow_key] = credential
    _save(session, flows)


def get_flow(session: Session, flow_key: str) -> str | None:
    """Credential stored for flow_key, or None when there is no such pending flow."""
    credential = _flows(session).get(flow_key)
    return credential or None


def delete_flow(session: Session, flow_key: str) -> None:
    flows = _flows(session)
    if flows.pop(flow_key, None) is not None:
        _save(session, flows)
