from .credential import Credential, RefreshFn, TokenGrant
from .token_endpoint import TokenEndpointRefresher

__all__ = ["Credential", "RefreshFn", "TokenGrant", "TokenEndpointRefresher"]
