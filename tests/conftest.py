import json
from urllib.parse import urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.cookies import cookiejar_from_dict
from requests.structures import CaseInsensitiveDict

from iisadmin.clients.iis import IISClient
from iisadmin.core.auth import Credentials
from iisadmin.core.executor import RetryPolicy

HOST = "https://iis.test:55539"


class FakeAdapter(BaseAdapter):
    """Scripted transport: replies are queued per (method, path?query).

    A queue's last reply repeats once the earlier ones are used up. A reply
    that is an exception instance is raised instead of returned.
    """

    def __init__(self):
        super().__init__()
        self.routes = {}
        self.requests = []

    def add(self, method, path, status=200, json_body=None, text="", headers=None, cookies=None):
        content = json.dumps(json_body).encode() if json_body is not None else text.encode()
        reply = {"status": status, "content": content, "headers": headers or {}, "cookies": cookies or {}}
        self.routes.setdefault((method, path), []).append(reply)
        return self

    def fail(self, method, path, exc):
        self.routes.setdefault((method, path), []).append(exc)
        return self

    def calls(self, method=None, path=None):
        out = []
        for r in self.requests:
            m, p = _key(r)
            if (method is None or m == method) and (path is None or p == path):
                out.append(r)
        return out

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.requests.append(request)
        key = _key(request)
        queue = self.routes.get(key)
        if not queue:
            raise AssertionError(f"unexpected request {key}")
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply

        r = requests.Response()
        r.status_code = reply["status"]
        r._content = reply["content"]
        r._content_consumed = True
        r.headers = CaseInsensitiveDict(reply["headers"])
        r.cookies = cookiejar_from_dict(dict(reply["cookies"]))
        r.encoding = "utf-8"
        r.url = request.url
        r.request = request
        r.connection = self
        return r

    def close(self):
        pass


def _key(request):
    parts = urlsplit(request.url)
    path = parts.path + (f"?{parts.query}" if parts.query else "")
    return request.method, path


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def http_session(adapter):
    s = requests.Session()
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    return s


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=5, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def credentials():
    return Credentials(identity="alice", secret="s3cret", realm="CORP", bearer_token="t" * 54)


@pytest.fixture
def client(http_session, credentials, fast_policy):
    return IISClient(HOST, credentials, session=http_session, policy=fast_policy)
