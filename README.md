# kindtools

Building blocks for tools that manage local Kubernetes clusters whose
"nodes" are containers. It is a library; it has no command-line program of
its own.

- `kindtools.errors`: wrapping errors with a message and the stack where they
  were wrapped, aggregating several errors into one, and walking a chain of
  causes.
- `kindtools.concurrent`: running callables on threads and raising the first
  error, or all of them together.
- `kindtools.fs`: container-friendly temporary directories, a POSIX-aware
  absolute path check, and recursive copying that keeps file modes and
  follows symlinks.
- `kindtools.version`: the version string and the version display line.
- `kindtools.command`: running local processes, capturing their output as
  bytes or lines, and streaming data into or out of them.
- `kindtools.iostreams`: one object holding the input, output and error
  streams.
- `kindtools.nodeutils`: the `Node` type, selecting nodes by role, and
  working with files and images on a node.
- `kindtools.load`: loading local docker images or image archives into nodes.

## Errors

```python
from kindtools.errors import errors, new_aggregate, stack_trace, wrap

first = ValueError("foo")
second = ValueError("bar")
err = wrap(new_aggregate([first, second]), "baz")

assert errors(err) == [first, second]
assert str(err) == "baz: [foo, bar]"
```

`new_aggregate` drops `None` entries, flattens nested aggregates, returns a
single error on its own and `None` for no errors; what it returns is a
`WrappedError` carrying the stack. `errors` returns the members of the
deepest `Aggregate` in the cause chain (an empty list if there is none), and
`stack_trace` returns the deepest recorded stack.
`Aggregate.contains(target)` reports whether an aggregate holds an error, or
an error of a given class, anywhere inside it.

## Concurrency

`until_error_concurrent(funcs)` runs each callable on its own thread and
raises the first exception to arrive. `aggregate_concurrent(funcs)` waits for
all of them; one failure is raised as is, several are raised together as an
aggregate.

## Filesystem

`temp_dir(dir, prefix)` creates a temporary directory (on macOS a `/var/...`
path is returned as `/private/var/...`). `is_abs(path)` counts POSIX absolute
paths as absolute on any host. `copy(src, dst)` copies recursively, creating
parent directories; `copy_file(src, dst)` copies one file keeping its mode.

## Version

```python
from kindtools.version import display_version, truncate, version

print(version())          # "0.13.0-alpha"
print(display_version())  # "kind v0.13.0-alpha python<version> <platform>/<arch>"
assert truncate("A Short String", 10) == "A Short St"
```

## Commands

```python
from kindtools.command import command, output_lines, pretty_command

assert pretty_command("echo", "hello world") == "echo 'hello world'"
assert output_lines(command("echo", "hello")) == ["hello"]
```

`command(name, *args)` returns a `LocalCmd`, whose `set_env`, `set_stdin`,
`set_stdout` and `set_stderr` return the command itself, and whose `run()`
raises a wrapped `RunError` when the process cannot start or exits with a
non-zero status. `RunError` carries the command, the combined output and the
inner error; `RunError.pretty_command()` gives a line that can be pasted into
a shell, and `run_error_for_error(err)` finds it in a cause chain. Other
helpers: `output`, `combined_output_lines`, `inherit_output`,
`run_with_stdout_reader` and `run_with_stdin_writer`.

## Nodes

A `Node` has a `name`, a `role_value` and an `exec_prefix`, the argument list
that runs a command inside it:

```python
from kindtools.nodeutils import (
    Node,
    bootstrap_control_plane_node,
    internal_nodes,
    parse_snapshotter,
)

prefix = ("docker", "exec", "--privileged", "-i")
nodes = [
    Node("kind-control-plane", "control-plane", (*prefix, "kind-control-plane")),
    Node("kind-worker", "worker", (*prefix, "kind-worker")),
]
assert internal_nodes(nodes) == nodes
assert bootstrap_control_plane_node(nodes).name == "kind-control-plane"

config = """
[plugins."io.containerd.grpc.v1.cri".containerd]
  snapshotter = "overlayfs"
"""
assert parse_snapshotter(config) == "overlayfs"
```

Role helpers: `select_nodes_by_role`, `internal_nodes`,
`external_load_balancer_node`, `api_server_endpoint_node`,
`control_plane_nodes` (sorted by name), `bootstrap_control_plane_node` and
`secondary_control_plane_nodes`; invalid node lists raise `ValueError`.
Helpers that run commands on a node: `kube_version`, `write_file`,
`copy_node_to_node`, `load_image_archive` and `image_id`.

## Loading images

```python
from kindtools.load import load_image_archive_into_nodes, remove_duplicates

assert remove_duplicates(["one", "two", "two", "one"]) == ["one", "two"]
load_image_archive_into_nodes("images.tar", nodes)
```

`select_nodes(node_list, names)` picks nodes by name (all of them when no
names are given). `load_docker_images(image_names, nodes, logger)` checks each
image is present locally, saves them with `docker save` into a temporary
archive, and loads it only onto nodes that do not already hold the same image
ID, logging through a standard `logging.Logger`.

## What this package does not do

It does not create, delete or list clusters, does not find which container
runtime is available, does not read cluster configuration files or
kubeconfigs, and offers no command-line program. Callers build the `Node`
list themselves and pass it to the helpers above.