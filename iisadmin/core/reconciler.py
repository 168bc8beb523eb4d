"""Create-or-adopt for named resources.

The API has no upsert. A create that comes back 409 means some other actor
(another run, an operator, a partial earlier apply) already holds a resource
with the same natural key, so we ask the server for it and adopt it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional

from iisadmin.core.errors import Cancelled, Conflict, IISAdminError
from iisadmin.core.utils import normalize_path

logger = logging.getLogger(__name__)

Matcher = Callable[[str, str], bool]


@dataclass(frozen=True)
class ResourceRef:
    kind: str
    name: str
    remote_id: str
    data: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_json(cls, kind: str, data: Dict[str, Any], key: str = "name") -> "ResourceRef":
        data = data or {}
        return cls(kind=kind, name=data.get(key) or "", remote_id=data.get("id") or "", data=data)


def exact_match(candidate: str, natural_key: str) -> bool:
    return candidate == natural_key


def path_match(candidate: str, natural_key: str) -> bool:
    return normalize_path(candidate) == normalize_path(natural_key)


_MATCHERS: Dict[str, Matcher] = {
    "file": path_match,
    "directory": path_match,
}


def register_matcher(kind: str, matcher: Matcher) -> None:
    _MATCHERS[kind] = matcher


def matcher_for(kind: str) -> Matcher:
    return _MATCHERS.get(kind, exact_match)


def find_match(
    kind: str,
    natural_key: str,
    candidates: Iterable[ResourceRef],
    matcher: Optional[Matcher] = None,
) -> Optional[ResourceRef]:
    """First candidate whose name matches ``natural_key``, in server list order."""
    match = matcher or matcher_for(kind)
    for ref in candidates:
        if match(ref.name, natural_key):
            return ref
    return None


def create_or_adopt(
    kind: str,
    natural_key: str,
    create_fn: Callable[[], ResourceRef],
    lookup_fn: Callable[[], Iterable[ResourceRef]],
    matcher: Optional[Matcher] = None,
) -> ResourceRef:
    try:
        return create_fn()
    except Conflict as conflict:
        try:
            existing = find_match(kind, natural_key, lookup_fn(), matcher)
        except Cancelled:
            raise
        except IISAdminError as e:
            logger.warning("%s %r: lookup after conflict failed: %s", kind, natural_key, e.message)
            raise conflict
        if existing is None:
            logger.warning("%s %r: conflict reported but no matching resource listed", kind, natural_key)
            raise
        logger.info("%s %r already exists, adopting id=%s", kind, natural_key, existing.remote_id)
        return existing
