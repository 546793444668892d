"""
Failure kinds of the OAuth flow. Each kind maps to one HTTP status; the response body is
"{message}: {detail}" (or just the message when there is no detail).
"""
import logging


class FlowError(Exception):
    status_code = 500
    message = "internal error"
    log_level = logging.ERROR

    def __init__(self, detail: str | Exception | None = None):
        self.detail = str(detail) if detail is not None else ""
        super().__init__(self.body())

    def body(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class StateDecodeError(FlowError):
    status_code = 400
    message = "failed to decode the OAuth state"


class StateEncodeError(FlowError):
    status_code = 500
    message = "failed to encode OAuth state"


class MissingCredential(FlowError):
    status_code = 401
    message = "failed extract authorization info either from headers or form/query parameters"
    log_level = logging.DEBUG


class AccessCheckError(FlowError):
    status_code = 500
    message = "failed to determine if the authenticated user has access"


class AccessDenied(FlowError):
    status_code = 401
    message = "authenticating the request in Kubernetes unsuccessful"
    log_level = logging.DEBUG


class SessionCodecError(FlowError):
    status_code = 500
    message = "failed to decode session data"


class RenderError(FlowError):
    status_code = 500
    message = "failed to return redirect notice HTML page"


class AuthorizationRequired(FlowError):
    status_code = 401
    message = "could not authenticate to Kubernetes"
    log_level = logging.INFO


class ProviderExchangeError(FlowError):
    status_code = 400
    message = "error in Service Provider token exchange"
    log_level = logging.INFO


class PersistenceError(FlowError):
    status_code = 500
    message = "failed to store token data to cluster"
