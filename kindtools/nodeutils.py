"""Selecting cluster nodes by role and working with files and images on them."""

from __future__ import annotations

import io
import json
import posixpath
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import tomli

from kindtools.command import LocalCmd, command, output, output_lines
from kindtools.errors import wrap

CONTROL_PLANE_ROLE = "control-plane"
WORKER_ROLE = "worker"
EXTERNAL_LOAD_BALANCER_ROLE = "external-load-balancer"

_SNAPSHOTTER_PATH = ("plugins", "io.containerd.grpc.v1.cri", "containerd", "snapshotter")
_SNAPSHOTTER_ERROR = "failed to detect containerd snapshotter"


def _quote(value: str) -> str:
    return json.dumps(value)


@dataclass
class Node:
    """A cluster node: its name, its role and how to run commands inside it.

    ``exec_prefix`` is the argument list that runs a command inside the node,
    for example ``("docker", "exec", "--privileged", "-i", "kind-worker")``.
    With an empty prefix commands run on the local host.
    """

    name: str
    role_value: str
    exec_prefix: Sequence[str] = ()

    def role(self) -> str:
        """Return the node's role."""
        return self.role_value

    def command(self, name: str, *args: str) -> LocalCmd:
        """Return a command that runs ``name`` with ``args`` inside the node."""
        argv = [*self.exec_prefix, name, *args]
        return command(argv[0], *argv[1:])

    def __str__(self) -> str:
        return self.name


def select_nodes_by_role(all_nodes: Iterable[Node], role: str) -> list[Node]:
    """Return the nodes whose role is ``role``."""
    return [node for node in all_nodes if node.role() == role]


def internal_nodes(all_nodes: Iterable[Node]) -> list[Node]:
    """Return the nodes that are Kubernetes nodes, not e.g. the load balancer."""
    return [
        node
        for node in all_nodes
        if node.role() in (WORKER_ROLE, CONTROL_PLANE_ROLE)
    ]


def external_load_balancer_node(all_nodes: Iterable[Node]) -> Node | None:
    """Return the external load balancer node, or ``None`` if there is none."""
    balancers = select_nodes_by_role(all_nodes, EXTERNAL_LOAD_BALANCER_ROLE)
    if not balancers:
        return None
    if len(balancers) > 1:
        raise ValueError(
            f"unexpected number of {EXTERNAL_LOAD_BALANCER_ROLE} nodes {len(balancers)}"
        )
    return balancers[0]


def api_server_endpoint_node(all_nodes: Iterable[Node]) -> Node:
    """Return the node hosting the API server endpoint.

    That is the load balancer if there is one, otherwise the single
    control plane node.
    """
    all_nodes = list(all_nodes)
    try:
        balancer = external_load_balancer_node(all_nodes)
    except Exception as exc:
        raise wrap(exc, "failed to find api-server endpoint node") from exc
    if balancer is not None:
        return balancer
    try:
        control_planes = control_plane_nodes(all_nodes)
    except Exception as exc:
        raise wrap(exc, "failed to find api-server endpoint node") from exc
    if len(control_planes) != 1:
        raise ValueError(
            "expected one control plane node or a load balancer, "
            f"not {len(control_planes)} and none"
        )
    return control_planes[0]


def control_plane_nodes(all_nodes: Iterable[Node]) -> list[Node]:
    """Return the control plane nodes sorted by name; the first is the bootstrap node."""
    return sorted(select_nodes_by_role(all_nodes, CONTROL_PLANE_ROLE), key=str)


def _require_control_planes(all_nodes: Iterable[Node]) -> list[Node]:
    nodes = control_plane_nodes(all_nodes)
    if not nodes:
        raise ValueError(f"expected at least one {CONTROL_PLANE_ROLE} node")
    return nodes


def bootstrap_control_plane_node(all_nodes: Iterable[Node]) -> Node:
    """Return the bootstrap control plane node."""
    return _require_control_planes(all_nodes)[0]


def secondary_control_plane_nodes(all_nodes: Iterable[Node]) -> list[Node]:
    """Return every control plane node except the bootstrap one."""
    return _require_control_planes(all_nodes)[1:]


def kube_version(node: Node) -> str:
    """Return the Kubernetes version installed on the node."""
    try:
        lines = output_lines(node.command("cat", "/kind/version"))
    except Exception as exc:
        raise wrap(exc, "failed to get file") from exc
    if len(lines) != 1:
        raise ValueError(f"file should only be one line, got {len(lines)} lines")
    return lines[0]


def write_file(node: Node, dest: str, content: str) -> None:
    """Write ``content`` to ``dest`` on the node, creating its directory."""
    directory = posixpath.dirname(dest)
    try:
        node.command("mkdir", "-p", directory).run()
    except Exception as exc:
        raise wrap(exc, f"failed to create directory {directory}") from exc
    node.command("cp", "/dev/stdin", dest).set_stdin(content).run()


def copy_node_to_node(a: Node, b: Node, file: str) -> None:
    """Copy ``file`` from node ``a`` to the same path on node ``b``."""
    directory = posixpath.dirname(file)
    try:
        b.command("mkdir", "-p", directory).run()
    except Exception as exc:
        raise wrap(exc, f"failed to create directory {_quote(directory)}") from exc
    buffer = io.BytesIO()
    try:
        a.command("cat", file).set_stdout(buffer).run()
    except Exception as exc:
        raise wrap(exc, f"failed to read {_quote(file)} from node") from exc
    try:
        b.command("cp", "/dev/stdin", file).set_stdin(buffer.getvalue()).run()
    except Exception as exc:
        raise wrap(exc, f"failed to write {_quote(file)} to node") from exc


def load_image_archive(node: Node, image: Any) -> None:
    """Import an image archive, read from ``image``, into the node's containerd."""
    snapshotter = _get_snapshotter(node)
    cmd = node.command(
        "ctr", "--namespace=k8s.io", "images", "import", "--snapshotter", snapshotter, "-"
    ).set_stdin(image)
    try:
        cmd.run()
    except Exception as exc:
        raise wrap(exc, "failed to load image") from exc


def _get_snapshotter(node: Node) -> str:
    try:
        raw = output(node.command("containerd", "config", "dump"))
    except Exception as exc:
        raise wrap(exc, _SNAPSHOTTER_ERROR) from exc
    return parse_snapshotter(raw.decode("utf-8", errors="replace"))


def parse_snapshotter(config: str) -> str:
    """Return the CRI snapshotter named in a containerd TOML configuration."""
    try:
        value: Any = tomli.loads(config)
    except tomli.TOMLDecodeError as exc:
        raise wrap(exc, _SNAPSHOTTER_ERROR) from exc
    for key in _SNAPSHOTTER_PATH:
        if not isinstance(value, dict) or key not in value:
            raise ValueError(_SNAPSHOTTER_ERROR)
        value = value[key]
    if not isinstance(value, str):
        raise ValueError(_SNAPSHOTTER_ERROR)
    return value


def image_id(node: Node, image: str) -> str:
    """Return the ID of ``image`` on the node, or an empty string if none is reported."""
    buffer = io.BytesIO()
    node.command("crictl", "inspecti", image).set_stdout(buffer).run()
    parsed = json.loads(buffer.getvalue())
    if parsed is None:
        return ""
    if not isinstance(parsed, dict):
        raise ValueError("unexpected image inspection output")
    status = parsed.get("status")
    if status is None:
        return ""
    if not isinstance(status, dict):
        raise ValueError("unexpected image inspection output")
    image_ref = status.get("id", "")
    if not isinstance(image_ref, str):
        raise ValueError("unexpected image inspection output")
    return image_ref