"""Loading container images from the host or from archives into cluster nodes."""

from __future__ import annotations

import json
import logging
import os
import shutil
from collections.abc import Iterable, Sequence

from kindtools import nodeutils
from kindtools.command import command, output_lines
from kindtools.concurrent import until_error_concurrent
from kindtools.errors import wrap
from kindtools.fs import temp_dir
from kindtools.nodeutils import Node

_log = logging.getLogger(__name__)


def _quote(value: str) -> str:
    return json.dumps(value)


def remove_duplicates(items: Iterable[str]) -> list[str]:
    """Return ``items`` without repeats, keeping the first occurrence of each."""
    return list(dict.fromkeys(items))


def select_nodes(node_list: Sequence[Node], names: Iterable[str] | None) -> list[Node]:
    """Pick the nodes named in ``names``, or every node when no names are given.

    Raises ``ValueError`` for a name that matches no node.
    """
    names = list(names or [])
    if not names:
        return list(node_list)
    by_name = {str(node): node for node in node_list}
    selected = []
    for name in names:
        node = by_name.get(name)
        if node is None:
            raise ValueError(f"unknown node: {_quote(name)}")
        selected.append(node)
    return selected


def docker_image_id(image_name: str) -> str:
    """Return the ID of a locally present docker image."""
    lines = output_lines(
        command("docker", "image", "inspect", "-f", "{{ .Id }}", image_name)
    )
    if len(lines) != 1:
        raise ValueError(
            f"Docker image ID should only be one line, got {len(lines)} lines"
        )
    return lines[0]


def save_images(images: Sequence[str], dest: str) -> None:
    """Save docker images into the archive ``dest``, as ``docker save`` does."""
    command("docker", "save", "-o", dest, *images).run()


def load_image_file(image_tar_path: str, node: Node) -> None:
    """Load the image archive at ``image_tar_path`` onto ``node``."""
    try:
        archive = open(image_tar_path, "rb")
    except OSError as exc:
        raise wrap(exc, "failed to open image") from exc
    with archive:
        nodeutils.load_image_archive(node, archive)


def load_image_archive_into_nodes(image_tar_path: str, nodes: Sequence[Node]) -> None:
    """Load one image archive onto every node concurrently.

    The archive must exist and at least one node must be given.
    """
    os.stat(image_tar_path)
    nodes = list(nodes)
    if not nodes:
        raise ValueError("no nodes found to load the image archive into")
    until_error_concurrent(
        [lambda node=node: load_image_file(image_tar_path, node) for node in nodes]
    )


def load_docker_images(
    image_names: Iterable[str],
    nodes: Sequence[Node],
    logger: logging.Logger | None = None,
) -> None:
    """Load host docker images onto the nodes that do not already have them.

    Every image must be present locally. Nodes already holding an image with
    the same ID are skipped; if no node needs any image nothing is loaded.
    """
    log = logger if logger is not None else _log
    names = remove_duplicates(image_names)
    image_ids = []
    for name in names:
        try:
            image_ids.append(docker_image_id(name))
        except Exception as exc:
            raise ValueError(f"image: {_quote(name)} not present locally") from exc

    nodes = list(nodes)
    if not nodes:
        raise ValueError("no nodes found to load the images into")

    selected: list[Node] = []
    for name, wanted_id in zip(names, image_ids):
        for node in nodes:
            try:
                present_id = nodeutils.image_id(node, name)
            except Exception:
                present_id = None
            if present_id != wanted_id:
                if not any(node is chosen for chosen in selected):
                    selected.append(node)
                log.info(
                    "Image: %s with ID %s not yet present on node %s, loading...",
                    _quote(name),
                    _quote(wanted_id),
                    _quote(str(node)),
                )
        if not selected:
            log.info(
                "Image: %s with ID %s found to be already present on all nodes.",
                _quote(name),
                _quote(wanted_id),
            )

    if not selected:
        return

    try:
        directory = temp_dir("", "images-tar")
    except OSError as exc:
        raise wrap(exc, "failed to create tempdir") from exc
    try:
        tar_path = os.path.join(directory, "images.tar")
        save_images(names, tar_path)
        until_error_concurrent(
            [lambda node=node: load_image_file(tar_path, node) for node in selected]
        )
    finally:
        shutil.rmtree(directory, ignore_errors=True)