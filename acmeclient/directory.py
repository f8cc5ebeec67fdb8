"""
ACME resource directory: resource name → endpoint URL.
"""
from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Mapping

from acmeclient.errors import AcmeClientError

logger = logging.getLogger(__name__)


class Resource(str, enum.Enum):
    NEW_REGISTRATION = "new-reg"
    NEW_AUTHORIZATION = "new-authz"
    CHALLENGE = "challenge"
    NEW_CERTIFICATE = "new-cert"


class ResourcesDirectory:
    """Immutable view of a fetched directory document."""

    def __init__(self, document: Mapping[str, object]) -> None:
        if not isinstance(document, Mapping):
            raise AcmeClientError(f"Directory document must be a JSON object, got {type(document).__name__}")
        # Only string values are endpoints; "meta" and friends are skipped.
        self._urls = {name: url for name, url in document.items() if isinstance(url, str)}

    def get_resource_url(self, resource: Resource | str) -> str:
        name = resource.value if isinstance(resource, Resource) else resource
        try:
            return self._urls[name]
        except KeyError:
            raise AcmeClientError(f"Resource {name!r} is not listed in the ACME directory") from None

    def __contains__(self, resource: object) -> bool:
        name = resource.value if isinstance(resource, Resource) else resource
        return name in self._urls

    def __repr__(self) -> str:
        return f"ResourcesDirectory({sorted(self._urls)!r})"


class LazyDirectory:
    """
    Fetches the directory on first ``resolve`` and keeps it for good.

    ``fetch`` runs at most once per instance, even when the first lookups
    race on several threads.
    """

    def __init__(self, fetch: Callable[[], Mapping[str, object]]) -> None:
        self._fetch = fetch
        self._directory: ResourcesDirectory | None = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._directory is not None

    def get(self) -> ResourcesDirectory:
        if self._directory is None:
            with self._lock:
                if self._directory is None:
                    self._directory = ResourcesDirectory(self._fetch())
                    logger.info("Loaded ACME directory: %r", self._directory)
        return self._directory

    def resolve(self, resource: Resource | str) -> str:
        return self.get().get_resource_url(resource)
