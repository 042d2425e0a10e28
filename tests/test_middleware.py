import base64
import logging

import pytest

from lanserve.middleware import StatusRecorder, with_basic_auth, with_recovery, with_tracing


class FakeRequest:
    def __init__(self, path="/", command="GET", headers=None, client_address=("127.0.0.1", 5555)):
        self.client_address = client_address
        self.command = command
        self.path = path
        self.request_version = "HTTP/1.1"
        self.headers = headers if headers is not None else {}
        self.close_connection = False


class FakeResponse:
    def __init__(self):
        self.statuses = []
        self.headers = []
        self.body = b""
        self.headers_sent = False

    def send_response(self, code, message=None):
        self.statuses.append(code)

    def send_header(self, keyword, value):
        self.headers.append((keyword, value))

    def end_headers(self):
        self.headers_sent = True

    def write(self, data):
        self.body += data
        return len(data)

    def flush(self):
        pass


def not_found(request, response):
    response.send_response(404)
    response.send_header("Content-Length", "3")
    response.end_headers()
    response.write(b"nop")


def body_only(request, response):
    response.write(b"hello")
    response.write(b" world")


def trace_messages(caplog):
    return [r.getMessage() for r in caplog.records if r.name == "lanserve.middleware" and r.levelno == logging.INFO]


def test_recorder_forwards_and_counts():
    response = FakeResponse()
    recorder = StatusRecorder(response)

    not_found(FakeRequest(), recorder)

    assert (recorder.status, recorder.length) == (404, 3)
    assert response.statuses == [404]
    assert response.headers == [("Content-Length", "3")]
    assert response.body == b"nop"
    assert recorder.headers_sent


def test_recorder_defaults_to_200():
    recorder = StatusRecorder(FakeResponse())
    body_only(FakeRequest(), recorder)
    assert (recorder.status, recorder.length) == (200, 11)


def test_tracing_logs_status_and_length(caplog):
    caplog.set_level(logging.INFO)
    request = FakeRequest("/missing?x=1", headers={"User-Agent": "curl/8.0"})
    response = FakeResponse()

    with_tracing(not_found)(request, response)

    assert trace_messages(caplog) == ['127.0.0.1:5555 [GET] "/missing?x=1" HTTP/1.1 404 3 "curl/8.0"']
    assert response.statuses == [404]
    assert response.body == b"nop"


def test_tracing_without_user_agent_and_ipv6_client(caplog):
    caplog.set_level(logging.INFO)
    request = FakeRequest("/", command="HEAD", client_address=("::1", 4000, 0, 0))

    with_tracing(body_only)(request, FakeResponse())

    assert trace_messages(caplog) == ['[::1]:4000 [HEAD] "/" HTTP/1.1 200 11 ""']


def test_tracing_quotes_request_uri(caplog):
    caplog.set_level(logging.INFO)
    request = FakeRequest('/a "b"', headers={"User-Agent": 'x"y'})

    with_tracing(body_only)(request, FakeResponse())

    assert trace_messages(caplog)[0] == '127.0.0.1:5555 [GET] "/a \\"b\\"" HTTP/1.1 200 11 "x\\"y"'


def test_tracing_logs_when_handler_fails(caplog):
    caplog.set_level(logging.INFO)

    def boom(request, response):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        with_tracing(boom)(FakeRequest("/boom"), FakeResponse())

    assert trace_messages(caplog) == ['127.0.0.1:5555 [GET] "/boom" HTTP/1.1 0 0 ""']


def test_recovery_turns_exception_into_500(caplog):
    def boom(request, response):
        raise ValueError("bad handler")

    response = FakeResponse()
    with_recovery(boom)(FakeRequest(), response)

    assert response.statuses == [500]
    assert ("Content-Type", "text/plain; charset=utf-8") in response.headers
    assert response.body == b"Internal Server Error\n"
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert errors[0].exc_info[0] is ValueError


def test_recovery_leaves_healthy_responses_alone():
    response = FakeResponse()
    with_recovery(not_found)(FakeRequest(), response)
    assert response.statuses == [404]
    assert response.body == b"nop"


def test_recovery_after_headers_were_sent_closes_connection():
    def half_done(request, response):
        response.send_response(200)
        response.end_headers()
        response.write(b"par")
        raise OSError("disk gone")

    request = FakeRequest()
    response = FakeResponse()
    with_recovery(half_done)(request, response)

    assert response.statuses == [200]
    assert response.body == b"par"
    assert request.close_connection


def test_recovery_ignores_client_disconnect(caplog):
    def disconnect(request, response):
        raise BrokenPipeError()

    request = FakeRequest()
    response = FakeResponse()
    with_recovery(disconnect)(request, response)

    assert response.statuses == []
    assert request.close_connection
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


def test_recovery_catches_faults_in_tracing():
    class ExplodingHeaders(dict):
        def get(self, key, default=None):
            raise RuntimeError("header access failed")

    response = FakeResponse()
    handler = with_recovery(with_tracing(lambda request, response: None))

    handler(FakeRequest(headers=ExplodingHeaders()), response)

    assert response.statuses == [500]


def test_recovered_fault_is_traced_with_status_before_the_fault(caplog):
    caplog.set_level(logging.INFO)

    def boom(request, response):
        raise RuntimeError("boom")

    response = FakeResponse()
    with_recovery(with_tracing(boom))(FakeRequest("/boom"), response)

    assert response.statuses == [500]
    assert trace_messages(caplog) == ['127.0.0.1:5555 [GET] "/boom" HTTP/1.1 0 0 ""']


def test_head_error_response_has_no_body():
    def boom(request, response):
        raise RuntimeError()

    response = FakeResponse()
    with_recovery(boom)(FakeRequest(command="HEAD"), response)
    assert response.statuses == [500]
    assert response.body == b""


def basic(user, password):
    return "Basic " + base64.b64encode(f"{user}:{password}".encode()).decode()


@pytest.mark.parametrize(
    "authorization",
    [
        None,
        "",
        basic("alice", "wrong"),
        basic("bob", "secret"),
        "Bearer abc",
        "Basic !!!notbase64",
        "Basic " + base64.b64encode(b"alicesecret").decode(),
    ],
)
def test_basic_auth_rejects(authorization):
    calls = []
    headers = {} if authorization is None else {"Authorization": authorization}
    response = FakeResponse()

    handler = with_basic_auth(lambda req, resp: calls.append(req), "alice", "secret", realm="files")
    handler(FakeRequest(headers=headers), response)

    assert calls == []
    assert response.statuses == [401]
    assert ("WWW-Authenticate", 'Basic realm="files", charset="UTF-8"') in response.headers
    assert response.body == b"Unauthorized\n"


def test_basic_auth_accepts():
    response = FakeResponse()
    handler = with_basic_auth(not_found, "alice", "s3:cr:et")

    handler(FakeRequest(headers={"Authorization": basic("alice", "s3:cr:et")}), response)

    assert response.statuses == [404]


def test_basic_auth_scheme_is_case_insensitive():
    response = FakeResponse()
    handler = with_basic_auth(body_only, "alice", "secret")
    handler(FakeRequest(headers={"Authorization": basic("alice", "secret").replace("Basic", "basic")}), response)
    assert response.body == b"hello world"


def test_traced_auth_failure(caplog):
    caplog.set_level(logging.INFO)
    handler = with_recovery(with_tracing(with_basic_auth(body_only, "alice", "secret")))

    handler(FakeRequest("/private"), FakeResponse())

    assert trace_messages(caplog) == ['127.0.0.1:5555 [GET] "/private" HTTP/1.1 401 13 ""']
