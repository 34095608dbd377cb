import io
import itertools
import json
from pathlib import Path

import pytest

from lsproto.dispatch import RequestAction
from lsproto.io import Output
from lsproto.server import (
    LsService,
    ServerContext,
    ServerStateChange,
    get_root_path,
    maybe_notify_deprecated_configs,
    maybe_notify_duplicated_configs,
    maybe_notify_unknown_configs,
    run_server,
    server_capabilities,
)


class RecordingOutput(Output):
    def __init__(self):
        self.sent = []
        self._ids = itertools.count(1)

    def response(self, output):
        self.sent.append(json.loads(output))

    def provide_id(self):
        return next(self._ids)


class ListReader:
    def __init__(self, messages):
        self._messages = list(messages)

    def read_message(self):
        return self._messages.pop(0) if self._messages else None


class Echo(RequestAction):
    method = "test/echo"

    def fallback_response(self):
        return {"fallback": True}

    def handle(self, ctx, params):
        return {"echo": params, "root": ctx.root_path.as_posix()}


def msg(**fields):
    return json.dumps({"jsonrpc": "2.0", **fields})


def init_msg(request_id=0, **extra):
    params = {"processId": None, "rootPath": "/path/a", "capabilities": {}, **extra}
    return msg(id=request_id, method="initialize", params=params)


def make_service(messages, **kwargs):
    out = RecordingOutput()
    service = LsService(ListReader(messages), out, context=ServerContext(pid=42), **kwargs)
    return service, out


def handle_all(service, count):
    return [service.handle_message() for _ in range(count)]


def show_messages(out):
    return [m["params"]["message"] for m in out.sent if m.get("method") == "window/showMessage"]


def test_use_root_uri():
    params = {"rootPath": "/path/a", "rootUri": "file:///path/b/"}
    assert get_root_path(params) == Path("/path/b")


def test_use_root_path():
    params = {"rootPath": "/path/a", "rootUri": None}
    assert get_root_path(params) == Path("/path/a")


def test_root_path_missing():
    with pytest.raises(ValueError):
        get_root_path({"rootPath": None, "rootUri": None})


def test_root_uri_with_other_scheme():
    with pytest.raises(ValueError):
        get_root_path({"rootUri": "http://example.com/path"})


def test_server_capabilities_commands_carry_pid():
    caps = server_capabilities(42)
    assert caps["executeCommandProvider"]["commands"] == [
        "rls.applySuggestion-42",
        "rls.deglobImports-42",
    ]
    assert caps["textDocumentSync"] == 2
    assert caps["completionProvider"] == {"resolveProvider": True, "triggerCharacters": [".", ":"]}
    assert caps["documentRangeFormattingProvider"] is False
    assert caps["codeLensProvider"] == {"resolveProvider": False}


def test_parse_shutdown_object_params():
    shutdown = '{"jsonrpc": "2.0", "id": 2, "method": "shutdown", "params": {}}'
    service, out = make_service([init_msg(), shutdown])
    with service:
        assert handle_all(service, 2) == [ServerStateChange(), ServerStateChange()]
    assert out.sent[-1] == {"jsonrpc": "2.0", "id": 2, "result": None}
    assert service.ctx.is_shut_down


def test_initialize_response_and_context():
    service, out = make_service([init_msg(request_id=7)])
    with service:
        assert service.handle_message() == ServerStateChange()
    assert len(out.sent) == 1
    assert out.sent[0]["id"] == 7
    assert out.sent[0]["result"]["capabilities"] == server_capabilities(42)
    assert service.ctx.initialized
    assert service.ctx.root_path == Path("/path/a")


def test_initialize_reads_client_capabilities():
    caps = {"textDocument": {"completion": {"completionItem": {"snippetSupport": True}}}}
    message = msg(id=0, method="initialize", params={"rootPath": "/path/a", "capabilities": caps})
    service, _ = make_service([message])
    with service:
        service.handle_message()
    assert service.ctx.capabilities.code_completion_has_snippet_support is True
    assert service.ctx.capabilities.related_information_support is False


def test_omit_init_build_sends_only_the_response():
    service, out = make_service([init_msg(request_id=1337, initializationOptions={"omitInitBuild": True})])
    with service:
        service.handle_message()
    assert len(out.sent) == 1
    assert out.sent[0]["id"] == 1337
    assert service.ctx.init_options.omit_init_build is True


def test_initialize_twice_fails():
    service, out = make_service([init_msg(0), init_msg(1)])
    with service:
        handle_all(service, 2)
    assert out.sent[-1] == {
        "jsonrpc": "2.0",
        "error": {"code": 123, "message": "Already received an initialize request"},
        "id": 1,
    }


def test_fail_uninitialized_request():
    request = msg(id=1337, method="test/echo", params={"position": {"line": 0, "character": 0}})
    service, out = make_service([request])
    service.register_request(Echo())
    with service:
        assert service.handle_message() == ServerStateChange()
    assert out.sent[-1] == {
        "jsonrpc": "2.0",
        "error": {"code": -32002, "message": "not yet received `initialize` request"},
        "id": 1337,
    }


def test_shutdown_before_initialize_fails():
    service, out = make_service([msg(id=3, method="shutdown")])
    with service:
        service.handle_message()
    assert out.sent[-1]["error"]["code"] == -32002
    assert out.sent[-1]["id"] == 3


def test_dispatched_request_is_answered():
    request = msg(id=5, method="test/echo", params={"x": 1})
    service, out = make_service([init_msg(), request])
    service.register_request(Echo())
    with service:
        handle_all(service, 2)
        service.wait_for_concurrent_jobs()
    assert out.sent[-1] == {
        "jsonrpc": "2.0",
        "id": 5,
        "result": {"echo": {"x": 1}, "root": "/path/a"},
    }


def test_ignore_uninitialized_notification():
    calls = []
    note = msg(method="workspace/didChangeConfiguration", params={"settings": {}})
    service, out = make_service([note, init_msg(), note])
    service.register_notification(
        "workspace/didChangeConfiguration", None, lambda params, ctx, o: calls.append(params)
    )
    with service:
        assert service.handle_message() == ServerStateChange()
        assert calls == []
        handle_all(service, 2)
    assert calls == [{"settings": {}}]
    assert len(out.sent) == 1


def test_notification_with_bad_params_stops_server():
    def parse(params):
        raise ValueError("bad settings")

    service, out = make_service([msg(method="custom/note", params={})])
    service.register_notification("custom/note", parse, lambda params, ctx, o: None)
    with service:
        assert service.handle_message() == ServerStateChange(101)
    assert out.sent[-1]["error"]["code"] == -32602
    assert out.sent[-1]["id"] is None


def test_initialize_without_id_is_invalid_request():
    service, out = make_service([msg(method="initialize", params={"capabilities": {}})])
    with service:
        assert service.handle_message() == ServerStateChange(101)
    assert out.sent[-1]["error"]["code"] == -32600


def test_exit_codes():
    service, _ = make_service([msg(method="exit")])
    with service:
        assert service.handle_message() == ServerStateChange(1)
    service, _ = make_service([init_msg(), msg(id=1, method="shutdown"), msg(method="exit")])
    with service:
        assert handle_all(service, 3)[-1] == ServerStateChange(0)


def test_requests_ignored_in_shutdown_mode():
    service, out = make_service([init_msg(), msg(id=1, method="shutdown"), msg(id=2, method="test/echo")])
    service.register_request(Echo())
    with service:
        handle_all(service, 3)
        service.wait_for_concurrent_jobs()
    assert [m.get("id") for m in out.sent] == [0, 1]


def test_unreadable_input_stops_with_parse_error():
    service, out = make_service([])
    with service:
        assert service.handle_message() == ServerStateChange(101)
    assert out.sent == [
        {"jsonrpc": "2.0", "error": {"code": -32700, "message": "Parse error"}, "id": None}
    ]


def test_malformed_json_stops_with_parse_error():
    service, out = make_service(["{not json"])
    with service:
        assert service.handle_message() == ServerStateChange(101)
    assert out.sent[-1]["error"]["code"] == -32700


def test_responses_and_unknown_methods_are_ignored():
    service, out = make_service([msg(id=9, result=None), msg(id=4, method="no/such")])
    with service:
        assert handle_all(service, 2) == [ServerStateChange(), ServerStateChange()]
    assert out.sent == []


def test_init_duplicated_and_unknown_settings():
    def check(settings):
        return {"dup_val": ["dup_val", "dup_val"]}, ["unknown1"], ["use_crate_blacklist"]

    options = {"settings": {"rust": {"all_targets": False}, "extra": 1}}
    service, out = make_service(
        [init_msg(initializationOptions=options)],
        check_settings=check,
        deprecated_notices={"use_crate_blacklist": None},
    )
    with service:
        service.handle_message()
    messages = show_messages(out)
    assert any("Unknown" in m and "`extra`" in m and "`unknown1`" in m for m in messages)
    assert any("is deprecated" in m for m in messages)
    assert any("Duplicate" in m for m in messages)
    assert out.sent[-1]["id"] == 0
    assert service.ctx.init_options.settings == {"all_targets": False}


def test_notify_unknown_configs_format():
    out = RecordingOutput()
    maybe_notify_unknown_configs(out, ["a", "b"])
    assert out.sent == [
        {
            "jsonrpc": "2.0",
            "method": "window/showMessage",
            "params": {"type": 2, "message": "Unknown configuration: `a` ,`b` "},
        }
    ]


def test_notify_nothing_when_empty():
    out = RecordingOutput()
    maybe_notify_unknown_configs(out, [])
    maybe_notify_deprecated_configs(out, [], {})
    maybe_notify_duplicated_configs(out, {})
    assert out.sent == []


def test_notify_deprecated_configs():
    out = RecordingOutput()
    maybe_notify_deprecated_configs(out, ["x", "y"], {"x": "use z instead"})
    assert show_messages(out) == [
        "Configuration option `x` is deprecated: use z instead",
        "Configuration option `y` is deprecated",
    ]


def test_notify_duplicated_configs():
    out = RecordingOutput()
    maybe_notify_duplicated_configs(out, {"k": ["a", "b"]})
    assert show_messages(out) == ["Duplicated configuration: k: a, ,b, ; "]


def test_run_until_exit():
    service, _ = make_service([init_msg(), msg(id=1, method="shutdown"), msg(method="exit")])
    assert service.run() == 0


def test_run_server_parse_error_on_malformed_input():
    stdout = io.BytesIO()
    assert run_server(io.BytesIO(b"Malformed input"), stdout) == 101
    assert stdout.getvalue() == (
        b'Content-Length: 75\r\n\r\n{"jsonrpc":"2.0","error":{"code":-32700,'
        b'"message":"Parse error"},"id":null}'
    )