# lsproto

`lsproto` is a small framework for writing Language Server Protocol (LSP)
servers. It speaks JSON-RPC 2.0 over a byte stream such as stdin and stdout.

## What it provides

- `lsproto.io`: reading and writing framed messages with `Content-Length`
  headers (`read_message`, `StreamMessageReader`, `StreamOutput`). The
  `Output` base class has `success`, `failure`, `failure_message`, `notify`
  and `request` methods.
- `lsproto.message`: `RawMessage.try_parse` turns a JSON string into a raw
  message. `parse_as_request` and `parse_as_notification` turn a raw message
  into a `Request` or a `Notification`. The module also has `JsonRpcError`,
  `ErrorCode`, `ResponseError` and the response helpers `Ack`, `NoResponse`,
  `ResponseWithMessage` and `send_response`.
- `lsproto.dispatch`: a `Dispatcher` with one worker thread. It handles
  `RequestAction`s in order. A request that takes longer than the action's
  `timeout` (1.5 seconds by default) gets the action's `fallback_response()`.
- `lsproto.server`: `LsService`, the message loop. It handles `initialize`,
  `shutdown` and `exit` by itself and sends every other message to the
  handlers you register.
- `lsproto.lsp_data`: `Position`, `Range` (with `overlaps`), `Location`,
  `SymbolKind`, `CompletionItemKind`, `ClientCapabilities`,
  `InitializationOptions`, `range_from_file_string`, `make_workspace_edit`,
  and file-URI helpers (`parse_file_path`, `path_to_uri`).

## Installation

```
pip install .
```

To install the test tools as well:

```
pip install .[test]
```

## Command line

```
lsproto --version
lsproto --help
lsproto
```

With no arguments, `lsproto` runs `run_server()` on stdin and stdout. Any
other first argument prints the help text and exits with code 101.

## Writing a server

Subclass `RequestAction` and register it with an `LsService`:

```python
from lsproto.dispatch import RequestAction
from lsproto.io import StreamMessageReader, StreamOutput
from lsproto.server import LsService


class Hover(RequestAction):
    method = "textDocument/hover"

    def fallback_response(self):
        return None

    def handle(self, ctx, params):
        return {"contents": "hello"}


def on_did_open(params, ctx, out):
    ...


service = LsService(StreamMessageReader(), StreamOutput())
service.register_request(Hover(), lambda params: params)
service.register_notification("textDocument/didOpen", None, on_did_open)
exit_code = service.run()
```

The reader can be any object with a `read_message()` method. That method
returns a string, or `None` when no message can be read.

A handler can raise `ResponseError(code, message)` to send an error to the
client. A `ResponseError()` with no code is sent as an internal error.

Before `initialize` arrives:

- requests get error `-32002` (`not yet received \`initialize\` request`);
- notifications are ignored.

After `shutdown`, every message except `exit` is ignored.

`LsService` also takes these keyword arguments:

- `context`: a `ServerContext`.
- `check_settings`: a callable given the `rust` settings object from the
  initialization options. It returns the duplicated keys, the unknown keys
  and the deprecated keys it found. Each kind of key is reported to the
  client as a `window/showMessage` warning.
- `deprecated_notices`: text added to the warning for a deprecated key.

The service ends and returns an exit code in these cases:

| Case | Exit code |
| --- | --- |
| `exit` received after `shutdown` | 0 |
| `exit` received without `shutdown` | 1 |
| Input that cannot be read or parsed | 101 |

## What it does not do

`lsproto` does not analyse any programming language.

The plain `lsproto` command registers no handlers. It answers `initialize`,
`shutdown` and `exit`, and ignores every other method. This holds even
though the `initialize` response lists capabilities such as hover,
completion and formatting. Those features exist only once you register
handlers for them.

## Running the tests

```
pytest
```