# taskdispatch

Small building blocks for running work across threads, and two programs
built with them: an asynchronous Game of Life and a small web server.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Library

### `taskdispatch.once` – run a function exactly once

`Once.run(func, *args)` calls `func(*args)` the first time and returns
`True`; later calls return `False` without calling it. Threads that
arrive while the function is running wait for it to finish. If the
function raises, the guard stays unset and the next caller tries again.
Calling `run` again from inside the function itself raises
`RuntimeError`. `done()` tells whether the function has completed.

```python
from taskdispatch.once import Once

setup = Once()
setup.run(print, "initialised")   # prints, returns True
setup.run(print, "initialised")   # returns False
assert setup.done()
```

### `taskdispatch.apply` – a parallel loop

`apply(iterations, func, workers=None)` calls `func(i)` for every `i` in
`range(iterations)` and returns when all calls have finished. Indices are
handed out to up to `workers` threads, the calling thread among them,
never more than `MAX_WORKERS` (256) nor more than there are iterations.
`workers` defaults to `max_workers()`, the CPU count capped at 256. When
only one thread would be used, the calls run in order on the calling
thread. The first exception raised by `func` stops further indices from
being handed out and is raised once all threads are done. A negative
iteration count or fewer than one worker raises `ValueError`.

```python
from taskdispatch.apply import apply

squares = [0] * 100

def fill(i):
    squares[i] = i * i

apply(100, fill, 4)
```

### `taskdispatch.benchmark` – time a callable

`benchmark(count, func)` calls `func()` `count` times in a row and
returns the average nanoseconds per call, minus the cost of the loop
itself, never less than zero. A count of zero returns `0`; a negative
count raises `ValueError`. `loop_cost()` returns that loop cost; it is
measured once per process over ten million empty calls, so the first
call takes a while.

```python
from taskdispatch.benchmark import benchmark

ns = benchmark(100_000, lambda: sum(range(10)))
```

### `taskdispatch.objects` – reference-counted objects

`DispatchObject(target=None, is_global=False)` keeps an external
reference count (`retain`, `release`), an internal one
(`internal_retain`, `internal_release`) and a suspend count (`suspend`,
`resume`, `is_suspended`). When the last reference goes, the object is
disposed: its finalizer, set with `set_finalizer`, is called with its
`context` (if both are set) and its target's internal reference is
dropped. Global objects ignore retain, release, suspend, resume and
assignments to `context`.

Misuse raises `ClientCrash`: over-release, over-resume, releasing a
suspended object, retaining a released one. Broken internal bookkeeping
raises `InternalCrash`. `debug_attr()` returns the reference and suspend
counts; `debug(message)` logs and returns a description followed by the
message.

### `taskdispatch.buffer` – a fill/drain byte buffer

`Buffer` holds bytes waiting to be sent followed by free space.
`append` and `write_text` add data, growing as needed; `need_into`
reserves free space; `pending()` returns the waiting bytes and
`used_outof(n)` marks `n` of them sent (more than are pending raises
`ValueError`). `into_size()`, `outof_size()`, `size` and `debug_str()`
report its state.

### `taskdispatch.request` – HTTP helpers

`parse_request(text, first=True)` reads the request line into a
`RequestLine(method, path, version)`, raising `BadRequest` when it does
not match; with `first` the line must end in `HTTP/1.1`.
`header_complete`, `accepts_deflate` and `host_header` inspect a request
header. `not_found_response`, `redirect_response`, `ok_response` and
`chunk_header` build response bytes, `log_line` formats a transfer-log
entry and `ordinal_suffix` gives "st", "nd" or "th".

## Programs

### Game of Life

```
taskdispatch-life
taskdispatch-life -x 60 -y 30
taskdispatch-life -q
```

Every cell has its own serial queue. When a cell changes, its neighbours
ask their own neighbours whether they are alive and apply Conway's rules
once all answers are in. Because cells update independently, runs differ
from the classic game and from each other.

`-x` and `-y` set the grid size (default: the terminal size, or 40×20);
`-q` suppresses the display. The board is redrawn with ANSI escape codes
until Ctrl-C; `#` is a living cell and `.` a dead cell awaiting an
update. Invalid sizes print an error and exit with status 1.

From code, `Grid(width, height, seed=None)` offers `cell`, `neighbors`,
`set_alive`, `populate`, `display_char`, `render`, `wait_idle` and
`shutdown`, and works as a context manager:

```python
from taskdispatch.life import Grid

with Grid(20, 10, 1) as grid:
    grid.populate()
    grid.wait_idle(5.0)
    print(grid.render())
```

### Web server

```
taskdispatch-server
taskdispatch-server --port 8000 --root ./site --log ./transfer.log
```

Serves files from `--root` (default `~/Sites`) on `--port` (default
8080), each connection on its own thread. Directories are answered with
a 301 redirect to their `index.html`, missing files and paths outside
the root with a 404 page. Clients that accept `deflate` get a compressed,
chunked body. Pipelined requests on one connection are served in turn;
a connection left idle after a transfer is closed after five seconds
plus a tenth of a second per file already served.

Each transfer is appended to `--log` (default
`~/Library/Logs/<program>-transfer.log`) in common log format; if the
log file is renamed or deleted it is reopened before the next entry.
Every five seconds, and on `SIGINFO` where the platform has it, the
server prints a summary of its open connections.

`WebServer(doc_base, log_path, port=8080, server_name="taskdispatch")`
embeds the same server: `start()` runs it in the background and returns
the bound port (pass port 0 for a free one), `stop()` shuts it down,
`serve_forever()` runs it in the calling thread, and `dump_requests()`
returns the connection summary.

### What the server does not do

It answers only `GET`; other methods get no response. It has no TLS,
no range requests, no caching headers beyond `Expires: now`, and no
configuration file.