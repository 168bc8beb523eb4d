import json

import pytest
import requests

from conftest import HOST
from iisadmin.clients.iis import APP_POOLS, FILES, WEBSITES, IISClient
from iisadmin.core.auth import AuthMode, Credentials
from iisadmin.core.errors import Cancelled, Conflict, NotFound, UnexpectedResponse
from iisadmin.core.executor import CancelToken


def test_create_pool_first_attempt(adapter, client):
    adapter.add("POST", APP_POOLS, status=201, json_body={"id": "p1", "name": "Pool1"})

    ref = client.create_app_pool("Pool1")

    assert ref.remote_id == "p1"
    assert json.loads(adapter.requests[0].body) == {"name": "Pool1"}
    assert adapter.calls("GET") == []


def test_create_pool_adopts_on_conflict(adapter, client):
    adapter.add("POST", APP_POOLS, status=409, json_body={"title": "Conflict"})
    adapter.add("GET", APP_POOLS, json_body={"app_pools": [{"id": "p1", "name": "Pool1"}]})

    ref = client.create_app_pool("Pool1", "v4.0")

    assert ref.remote_id == "p1"
    assert ref.kind == "app_pool"


def test_create_pool_conflict_without_match(adapter, client):
    adapter.add("POST", APP_POOLS, status=409, json_body={"title": "Conflict"})
    adapter.add("GET", APP_POOLS, json_body={"app_pools": [{"id": "p2", "name": "Pool2"}]})

    with pytest.raises(Conflict) as info:
        client.create_app_pool("Pool1")
    assert info.value.method == "POST"


def test_create_pool_twice_returns_same_ref(adapter, client):
    adapter.add("POST", APP_POOLS, status=201, json_body={"id": "p1", "name": "Pool1"})
    adapter.add("POST", APP_POOLS, status=409, json_body={"title": "Conflict"})
    adapter.add("GET", APP_POOLS, json_body={"app_pools": [{"id": "p1", "name": "Pool1"}]})

    first = client.create_app_pool("Pool1")
    second = client.create_app_pool("Pool1")

    assert first == second
    assert len(adapter.calls("POST", APP_POOLS)) == 2


def test_create_website_adopts_by_name(adapter, client):
    adapter.add("POST", WEBSITES, status=409)
    adapter.add("GET", f"{WEBSITES}?fields=*", json_body={"websites": [{"id": "s1", "name": "Site"}]})

    ref = client.create_website("Site", "C:\\inetpub\\site", [{"protocol": "http", "port": 80}], "p1")

    assert ref.remote_id == "s1"
    body = json.loads(adapter.calls("POST")[0].body)
    assert body["application_pool"] == {"id": "p1"}
    assert body["physical_path"] == "C:\\inetpub\\site"


def test_create_directory_adopts_within_parent(adapter, client):
    adapter.add("POST", FILES, status=409)
    adapter.add(
        "GET",
        f"{FILES}?parent.id=root1",
        json_body={"files": [{"id": "d1", "name": "LOGS", "type": "directory", "physical_path": "C:\\site\\LOGS"}]},
    )

    ref = client.create_directory("logs", "root1")

    assert ref.remote_id == "d1"
    assert ref.kind == "directory"
    assert json.loads(adapter.calls("POST")[0].body) == {"name": "logs", "type": "directory", "parent": {"id": "root1"}}


def test_create_file_without_parent_cannot_adopt(adapter, client):
    adapter.add("POST", FILES, status=409)

    with pytest.raises(Conflict):
        client.create_file("orphan.txt")
    assert adapter.calls("GET") == []


def test_find_file_by_physical_path_descends_into_prefix_dirs(adapter, client):
    adapter.add("GET", FILES, json_body={"files": [
        {"id": "r1", "name": "C:", "type": "directory", "physical_path": "C:\\"},
        {"id": "r2", "name": "D:", "type": "directory", "physical_path": "D:\\"},
    ]})
    adapter.add("GET", f"{FILES}?parent.id=r1", json_body={"files": [
        {"id": "f1", "name": "inetpub", "type": "directory", "physical_path": "C:\\inetpub"},
    ]})
    adapter.add("GET", f"{FILES}?parent.id=f1", json_body={"files": [
        {"id": "f2", "name": "web.config", "type": "file", "physical_path": "C:\\inetpub\\web.config"},
    ]})

    ref = client.find_file_by_physical_path("c:/Inetpub/Web.config")

    assert ref.remote_id == "f2"
    assert adapter.calls("GET", f"{FILES}?parent.id=r2") == []


def test_find_file_falls_back_from_id(adapter, client):
    adapter.add("GET", f"{FILES}/missing", status=404)
    adapter.add("GET", FILES, json_body={"files": []})

    assert client.find_file("missing") is None


def test_lists_unwrap_envelopes(adapter, client):
    adapter.add("GET", "/api/certificates", json_body={"certificates": [{"alias": "web", "thumbprint": "AB"}]})
    adapter.add("GET", "/api/webserver/files?website.id=s1", json_body={"files": [{"id": "w1", "name": "index.html"}]})

    assert client.list_certificates() == [{"alias": "web", "thumbprint": "AB"}]
    assert [f.remote_id for f in client.list_web_server_files("s1")] == ["w1"]


def test_update_and_delete(adapter, client):
    adapter.add("PATCH", f"{APP_POOLS}/p1", json_body={"id": "p1", "name": "Pool1", "status": "stopped"})
    adapter.add("DELETE", f"{APP_POOLS}/p1", status=204)
    adapter.add("DELETE", f"{FILES}/gone", status=404)

    ref = client.update_app_pool("p1", "Pool1", "v4.0", "stopped")
    client.delete_app_pool("p1")

    assert ref.data["status"] == "stopped"
    with pytest.raises(NotFound):
        client.delete_file("gone")


def test_copy_body(adapter, client):
    adapter.add("POST", f"{FILES}/copy", status=201, json_body={"id": "c1", "name": "b.txt", "type": "file"})

    ref = client.copy_file("f1", "d1", "b.txt")

    assert ref.remote_id == "c1"
    assert json.loads(adapter.requests[0].body) == {"file": {"id": "f1"}, "parent": {"id": "d1"}, "name": "b.txt"}


def test_execute_returns_raw_bytes(adapter, client):
    adapter.add("GET", "/api", json_body={"links": {}})
    assert client.execute("GET", "/api") == b'{"links": {}}'


def test_set_token_only_once(http_session, fast_policy):
    c = IISClient("https://iis.test", Credentials("alice", "pw"), session=http_session, policy=fast_policy)
    assert c.auth_mode is AuthMode.CHALLENGE_RESPONSE

    c.set_token("t" * 54)
    assert c.auth_mode is AuthMode.BOTH
    with pytest.raises(ValueError):
        c.set_token("u" * 54)


@pytest.mark.parametrize("reply", [{"text": "<html>proxy login</html>"}, {"json_body": "maintenance"}, {"json_body": {"app_pools": "none"}}])
def test_create_pool_conflict_with_unreadable_lookup(adapter, client, reply):
    adapter.add("POST", APP_POOLS, status=409, json_body={"title": "Conflict"})
    adapter.add("GET", APP_POOLS, **reply)

    with pytest.raises(Conflict) as info:
        client.create_app_pool("Pool1")
    assert info.value.method == "POST"
    assert info.value.status == 409


def test_non_json_body_is_a_typed_error(adapter, client):
    adapter.add("GET", f"{APP_POOLS}/p1", text="<html>proxy login</html>")

    with pytest.raises(UnexpectedResponse) as info:
        client.get_app_pool("p1")
    assert info.value.url == f"{HOST}{APP_POOLS}/p1"
    assert "proxy login" in info.value.body


def test_non_object_body_is_a_typed_error(adapter, client):
    adapter.add("GET", f"{WEBSITES}/s1", json_body=["s1"])

    with pytest.raises(UnexpectedResponse) as info:
        client.get_website("s1")
    assert info.value.method == "GET"


def test_lists_accept_bare_arrays(adapter, client):
    adapter.add("GET", APP_POOLS, json_body=[{"id": "p1", "name": "Pool1"}])

    assert [p.remote_id for p in client.list_app_pools()] == ["p1"]


class TestCancellation:
    def test_cancelled_create_sends_nothing(self, adapter, client):
        token = CancelToken()
        token.cancel()

        with pytest.raises(Cancelled):
            client.create_app_pool("Pool1", cancel=token)
        assert adapter.requests == []

    def test_cancel_during_adoption_lookup(self, adapter, client):
        token = CancelToken()
        adapter.add("POST", APP_POOLS, status=409, json_body={"title": "Conflict"})
        adapter.fail("GET", APP_POOLS, requests.ConnectionError("connection reset"))
        send = adapter.send

        def cancel_on_lookup(request, **kwargs):
            if request.method == "GET":
                token.cancel()
            return send(request, **kwargs)

        adapter.send = cancel_on_lookup

        with pytest.raises(Cancelled):
            client.create_app_pool("Pool1", cancel=token)
        assert len(adapter.calls("GET", APP_POOLS)) == 1

    def test_token_reaches_every_lookup_page(self, adapter, client):
        token = CancelToken()
        adapter.add("GET", FILES, json_body={"files": [{"id": "d1", "type": "directory", "physical_path": "C:\\inetpub"}]})
        adapter.add("GET", f"{FILES}?parent.id=d1", json_body={"files": []})
        send = adapter.send

        def cancel_after_roots(request, **kwargs):
            response = send(request, **kwargs)
            token.cancel()
            return response

        adapter.send = cancel_after_roots

        with pytest.raises(Cancelled):
            client.find_file_by_physical_path("C:\\inetpub\\site", cancel=token)
        assert adapter.calls("GET", f"{FILES}?parent.id=d1") == []
