"""HTTP boundary — FastAPI routes over the ``Cumulus`` facade."""

from cumulus.api.app import create_app
from cumulus.api.deps import BearerTokenIdentityResolver

__all__ = ["BearerTokenIdentityResolver", "create_app"]
