from typing import Any, Callable, Dict, Iterable, List, Optional
import requests

from iisadmin.core.auth import Credentials, TransportAuthenticator
from iisadmin.core.errors import ClientError, UnexpectedResponse
from iisadmin.core.executor import CancelToken, RequestExecutor, RetryPolicy
from iisadmin.core.reconciler import Matcher, ResourceRef, create_or_adopt, path_match
from iisadmin.core.token import acquire_token
from iisadmin.core.utils import normalize_path

APP_POOLS = "/api/webserver/application-pools"
WEBSITES = "/api/webserver/websites"
WEBAPPS = "/api/webserver/webapps"
FILES = "/api/files"
WEB_SERVER_FILES = "/api/webserver/files"
CERTIFICATES = "/api/certificates"


class IISClient:
    def __init__(
        self,
        host: str,
        credentials: Credentials,
        session: Optional[requests.Session] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.session = session or requests.Session()
        self._credentials = credentials
        self.executor = RequestExecutor(self.session, self.host, TransportAuthenticator(credentials), policy)

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def auth_mode(self):
        return self.executor.authenticator.mode

    def set_token(self, token: str) -> None:
        """Install the session's access token. Allowed once, before the client is shared."""
        self._credentials = self._credentials.with_token(token)
        self.executor.authenticator = TransportAuthenticator(self._credentials)

    # --- core call surface ---

    def execute(self, method: str, path: str, body: Any = None, cancel: Optional[CancelToken] = None) -> bytes:
        return self.executor.execute(method, path, body, cancel=cancel)

    def acquire_token(self, identity: str, secret: str, realm: Optional[str] = None, expires_on: str = "") -> str:
        timeout = (self.executor.policy.connect_timeout, self.executor.policy.read_timeout)
        return acquire_token(
            self.session,
            self.host,
            Credentials(identity, secret, realm),
            expires_on=expires_on,
            timeout=timeout,
        )

    def create_or_adopt(
        self,
        kind: str,
        natural_key: str,
        create_fn: Callable[[], ResourceRef],
        lookup_fn: Callable[[], Iterable[ResourceRef]],
        matcher: Optional[Matcher] = None,
    ) -> ResourceRef:
        return create_or_adopt(kind, natural_key, create_fn, lookup_fn, matcher)

    def _object(self, method: str, path: str, data: Any) -> Dict[str, Any]:
        if data is None:
            return {}
        if not isinstance(data, dict):
            url = self.executor.url_for(path)
            raise UnexpectedResponse(method, url, f"expected a JSON object, got {type(data).__name__}")
        return data

    def _get(self, path: str, cancel: Optional[CancelToken] = None) -> Dict[str, Any]:
        return self._object("GET", path, self.executor.get_json(path, cancel=cancel))

    def _post(self, path: str, body: Any, cancel: Optional[CancelToken] = None) -> Dict[str, Any]:
        return self._object("POST", path, self.executor.post_json(path, body, cancel=cancel))

    def _patch(self, path: str, body: Any, cancel: Optional[CancelToken] = None) -> Dict[str, Any]:
        return self._object("PATCH", path, self.executor.patch_json(path, body, cancel=cancel))

    def _list(self, path: str, envelope: str, cancel: Optional[CancelToken] = None) -> List[Dict]:
        """Items of a list response, either wrapped as ``{envelope: [...]}`` or a bare array."""
        data = self.executor.get_json(path, cancel=cancel)
        if data is None:
            return []
        if isinstance(data, dict):
            data = data.get(envelope) or []
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise UnexpectedResponse("GET", self.executor.url_for(path), f"expected a list of {envelope}")
        return data

    # --- application pools ---

    def create_app_pool(
        self, name: str, managed_runtime_version: str = "", cancel: Optional[CancelToken] = None
    ) -> ResourceRef:
        """POST /api/webserver/application-pools, adopting an existing pool with the same name."""
        body: Dict[str, Any] = {"name": name}
        if managed_runtime_version:
            body["managed_runtime_version"] = managed_runtime_version
        return self.create_or_adopt(
            "app_pool",
            name,
            lambda: ResourceRef.from_json("app_pool", self._post(APP_POOLS, body, cancel)),
            lambda: self.list_app_pools(cancel),
        )

    def list_app_pools(self, cancel: Optional[CancelToken] = None) -> List[ResourceRef]:
        return [ResourceRef.from_json("app_pool", p) for p in self._list(APP_POOLS, "app_pools", cancel)]

    def get_app_pool(self, id: str, cancel: Optional[CancelToken] = None) -> ResourceRef:
        return ResourceRef.from_json("app_pool", self._get(f"{APP_POOLS}/{id}", cancel))

    def get_app_pool_by_name(self, name: str, cancel: Optional[CancelToken] = None) -> Optional[ResourceRef]:
        for p in self.list_app_pools(cancel):
            if p.name == name:
                return p
        return None

    def update_app_pool(
        self,
        id: str,
        name: str,
        managed_runtime_version: str,
        status: str,
        cancel: Optional[CancelToken] = None,
    ) -> ResourceRef:
        body = {"name": name, "managed_runtime_version": managed_runtime_version, "status": status}
        return ResourceRef.from_json("app_pool", self._patch(f"{APP_POOLS}/{id}", body, cancel))

    def delete_app_pool(self, id: str, cancel: Optional[CancelToken] = None) -> None:
        self.executor.delete(f"{APP_POOLS}/{id}", cancel=cancel)

    # --- websites ---

    def create_website(
        self,
        name: str,
        physical_path: str,
        bindings: List[Dict[str, Any]],
        app_pool_id: str,
        cancel: Optional[CancelToken] = None,
    ) -> ResourceRef:
        body = {
            "name": name,
            "physical_path": physical_path,
            "bindings": bindings,
            "application_pool": {"id": app_pool_id},
        }
        return self.create_or_adopt(
            "website",
            name,
            lambda: ResourceRef.from_json("website", self._post(WEBSITES, body, cancel)),
            lambda: self.list_websites(cancel),
        )

    def list_websites(self, cancel: Optional[CancelToken] = None) -> List[ResourceRef]:
        return [ResourceRef.from_json("website", s) for s in self._list(f"{WEBSITES}?fields=*", "websites", cancel)]

    def get_website(self, id: str, cancel: Optional[CancelToken] = None) -> ResourceRef:
        return ResourceRef.from_json("website", self._get(f"{WEBSITES}/{id}", cancel))

    def get_website_by_name(self, name: str, cancel: Optional[CancelToken] = None) -> Optional[ResourceRef]:
        for s in self.list_websites(cancel):
            if s.name == name:
                return s
        return None

    def delete_website(self, id: str, cancel: Optional[CancelToken] = None) -> None:
        self.executor.delete(f"{WEBSITES}/{id}", cancel=cancel)

    # --- applications ---

    def update_application(
        self,
        id: str,
        path: str = "",
        physical_path: str = "",
        app_pool_id: str = "",
        cancel: Optional[CancelToken] = None,
    ) -> ResourceRef:
        body: Dict[str, Any] = {}
        if path:
            body["path"] = path
        if physical_path:
            body["physical_path"] = physical_path
        if app_pool_id:
            body["application_pool"] = {"id": app_pool_id}
        return ResourceRef.from_json("application", self._patch(f"{WEBAPPS}/{id}", body, cancel), key="path")

    # --- files ---

    def create_file(
        self, name: str, parent_id: str = "", type: str = "file", cancel: Optional[CancelToken] = None
    ) -> ResourceRef:
        """POST /api/files. Only creations under a known parent can be adopted."""
        body: Dict[str, Any] = {"name": name, "type": type}
        if parent_id:
            body["parent"] = {"id": parent_id}

        def create() -> ResourceRef:
            return ResourceRef.from_json(type, self._post(FILES, body, cancel))

        if not parent_id:
            return create()
        return self.create_or_adopt(type, name, create, lambda: self.list_files(parent_id, cancel))

    def create_directory(self, name: str, parent_id: str, cancel: Optional[CancelToken] = None) -> ResourceRef:
        return self.create_file(name, parent_id, type="directory", cancel=cancel)

    def list_files(self, parent_id: str = "", cancel: Optional[CancelToken] = None) -> List[ResourceRef]:
        path = f"{FILES}?parent.id={parent_id}" if parent_id else FILES
        return [_file_ref(f) for f in self._list(path, "files", cancel)]

    def list_web_server_files(self, website_id: str = "", cancel: Optional[CancelToken] = None) -> List[ResourceRef]:
        path = f"{WEB_SERVER_FILES}?website.id={website_id}" if website_id else WEB_SERVER_FILES
        return [_file_ref(f) for f in self._list(path, "files", cancel)]

    def read_file(self, id: str, cancel: Optional[CancelToken] = None) -> ResourceRef:
        return _file_ref(self._get(f"{FILES}/{id}", cancel))

    def read_web_server_file(self, id: str, cancel: Optional[CancelToken] = None) -> ResourceRef:
        return _file_ref(self._get(f"{WEB_SERVER_FILES}/{id}", cancel))

    def delete_file(self, id: str, cancel: Optional[CancelToken] = None) -> None:
        self.executor.delete(f"{FILES}/{id}", cancel=cancel)

    def copy_file(self, file_id: str, parent_id: str, name: str = "", cancel: Optional[CancelToken] = None) -> ResourceRef:
        return _file_ref(self._post(f"{FILES}/copy", _copy_move_body(file_id, parent_id, name), cancel))

    def move_file(self, file_id: str, parent_id: str, name: str = "", cancel: Optional[CancelToken] = None) -> ResourceRef:
        return _file_ref(self._post(f"{FILES}/move", _copy_move_body(file_id, parent_id, name), cancel))

    def find_file_by_physical_path(
        self, physical_path: str, parent_id: str = "", cancel: Optional[CancelToken] = None
    ) -> Optional[ResourceRef]:
        """Depth-first search from ``parent_id`` (roots when empty), descending only into prefix directories."""
        target = normalize_path(physical_path)
        for f in self.list_files(parent_id, cancel):
            own = f.data.get("physical_path") or ""
            if path_match(own, physical_path):
                return f
            if f.data.get("type") == "directory" and target.startswith(normalize_path(own).rstrip("\\") + "\\"):
                found = self.find_file_by_physical_path(physical_path, f.remote_id, cancel)
                if found is not None:
                    return found
        return None

    def find_file(self, path_or_id: str, cancel: Optional[CancelToken] = None) -> Optional[ResourceRef]:
        """Read by id first, then fall back to a physical path search."""
        try:
            return self.read_file(path_or_id, cancel)
        except ClientError:
            return self.find_file_by_physical_path(path_or_id, cancel=cancel)

    # --- certificates ---

    def list_certificates(self, cancel: Optional[CancelToken] = None) -> List[Dict]:
        return self._list(CERTIFICATES, "certificates", cancel)


def _file_ref(data: Dict[str, Any]) -> ResourceRef:
    return ResourceRef.from_json(data.get("type") or "file", data)


def _copy_move_body(file_id: str, parent_id: str, name: str) -> Dict[str, Any]:
    body: Dict[str, Any] = {"file": {"id": file_id}, "parent": {"id": parent_id}}
    if name:
        body["name"] = name
    return body
