"""
Identity directory loading.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from ..config import Settings, get_settings
from ..core.interfaces import IdentityProvider, StaticIdentityProvider

logger = logging.getLogger(__name__)


def get_identity_provider(settings: Optional[Settings] = None) -> IdentityProvider:
    """Build the identity provider from ``settings.identity_directory_file``.

    Without a directory file every identity is treated as a member of every
    tenant and displayed by its id.

    Raises:
        ValueError: The directory file is not a JSON object of objects
    """
    settings = settings or get_settings()

    if not settings.identity_directory_file:
        return StaticIdentityProvider(open_membership=True)

    path = Path(settings.identity_directory_file)
    members = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(members, dict) or not all(isinstance(v, dict) for v in members.values()):
        raise ValueError(f"{path} must map tenant ids to {{identity id: display name}} objects")

    logger.info(f"Loaded identity directory from {path}: {len(members)} tenants")
    return StaticIdentityProvider(members)
