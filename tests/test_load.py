import shlex

import pytest

from kindtools.command import RunError, run_error_for_error
from kindtools.errors import WrappedError
from kindtools.load import (
    docker_image_id,
    load_docker_images,
    load_image_archive_into_nodes,
    load_image_file,
    remove_duplicates,
    save_images,
    select_nodes,
)
from kindtools.nodeutils import Node

MISSING_IMAGE = "kindtools-test/definitely-missing-image:placeholder"

CONTAINERD_CONFIG = """version = 2
[plugins]
  [plugins."io.containerd.grpc.v1.cri"]
    [plugins."io.containerd.grpc.v1.cri".containerd]
      snapshotter = "overlayfs"
"""


def _fake_node(tmp_path, name):
    """A node whose commands are answered by a local shell script."""
    config = tmp_path / f"{name}-config.toml"
    config.write_text(CONTAINERD_CONFIG)
    out = tmp_path / f"{name}-imported.tar"
    args = tmp_path / f"{name}-args.txt"
    script = (
        'case "$1" in '
        f"containerd) cat {shlex.quote(str(config))};; "
        f"ctr) printf '%s ' \"$@\" > {shlex.quote(str(args))}; "
        f"cat > {shlex.quote(str(out))};; "
        "*) exit 1;; esac"
    )
    node = Node(name, "worker", ("sh", "-c", script, "sh"))
    return node, out, args


@pytest.mark.parametrize(
    "items, want",
    [
        ([], []),
        (["one", "two"], ["one", "two"]),
        (["one", "two", "two"], ["one", "two"]),
        (["one", "two", "two", "one"], ["one", "two"]),
    ],
    ids=["empty", "all different", "one dup", "two dup"],
)
def test_remove_duplicates(items, want):
    assert sorted(remove_duplicates(items)) == sorted(want)


def test_remove_duplicates_keeps_first_order():
    assert remove_duplicates(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


def test_select_nodes_defaults_to_all():
    nodes = [Node("kind-worker", "worker"), Node("kind-control-plane", "control-plane")]
    assert select_nodes(nodes, None) == nodes
    assert select_nodes(nodes, []) == nodes


def test_select_nodes_by_name_in_given_order():
    a = Node("kind-worker", "worker")
    b = Node("kind-worker2", "worker")
    c = Node("kind-control-plane", "control-plane")
    assert select_nodes([a, b, c], ["kind-control-plane", "kind-worker"]) == [c, a]


def test_select_nodes_unknown_name():
    nodes = [Node("kind-worker", "worker")]
    with pytest.raises(ValueError, match='unknown node: "nope"'):
        select_nodes(nodes, ["nope"])


def test_load_image_file_missing_archive(tmp_path):
    node = Node("kind-worker", "worker")
    with pytest.raises(WrappedError) as info:
        load_image_file(str(tmp_path / "absent.tar"), node)
    assert str(info.value).startswith("failed to open image")


def test_load_image_file_streams_archive(tmp_path):
    archive = tmp_path / "image.tar"
    archive.write_bytes(b"tar-bytes\x00\x01payload")
    node, out, args = _fake_node(tmp_path, "kind-worker")
    load_image_file(str(archive), node)
    assert out.read_bytes() == b"tar-bytes\x00\x01payload"
    assert args.read_text().split() == [
        "ctr",
        "--namespace=k8s.io",
        "images",
        "import",
        "--snapshotter",
        "overlayfs",
        "-",
    ]


def test_load_image_archive_into_all_nodes(tmp_path):
    archive = tmp_path / "image.tar"
    archive.write_bytes(b"archive-content")
    first, first_out, _ = _fake_node(tmp_path, "kind-worker")
    second, second_out, _ = _fake_node(tmp_path, "kind-worker2")
    load_image_archive_into_nodes(str(archive), [first, second])
    assert first_out.read_bytes() == b"archive-content"
    assert second_out.read_bytes() == b"archive-content"


def test_load_image_archive_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_image_archive_into_nodes(
            str(tmp_path / "absent.tar"), [Node("kind-worker", "worker")]
        )


def test_load_image_archive_without_nodes(tmp_path):
    archive = tmp_path / "image.tar"
    archive.write_bytes(b"x")
    with pytest.raises(ValueError, match="no nodes found"):
        load_image_archive_into_nodes(str(archive), [])


def test_load_image_archive_failing_node(tmp_path):
    archive = tmp_path / "image.tar"
    archive.write_bytes(b"x")
    broken = Node("kind-worker", "worker", ("sh", "-c", "exit 3", "sh"))
    with pytest.raises(WrappedError) as info:
        load_image_archive_into_nodes(str(archive), [broken])
    assert "failed to detect containerd snapshotter" in str(info.value)


def test_docker_image_id_missing_image():
    with pytest.raises(WrappedError) as info:
        docker_image_id(MISSING_IMAGE)
    run_error = run_error_for_error(info.value)
    assert isinstance(run_error, RunError)
    assert run_error.command[:3] == ["docker", "image", "inspect"]


def test_save_images_missing_image(tmp_path):
    with pytest.raises(WrappedError) as info:
        save_images([MISSING_IMAGE], str(tmp_path / "images.tar"))
    run_error = run_error_for_error(info.value)
    assert run_error.command == [
        "docker",
        "save",
        "-o",
        str(tmp_path / "images.tar"),
        MISSING_IMAGE,
    ]


def test_load_docker_images_requires_local_image():
    with pytest.raises(ValueError) as info:
        load_docker_images([MISSING_IMAGE], [Node("kind-worker", "worker")])
    assert str(info.value) == f'image: "{MISSING_IMAGE}" not present locally'