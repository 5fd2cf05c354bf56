"""Shared fixtures for treestream tests."""

import os

import pytest


@pytest.fixture
def sample_tree(tmp_path):
    """Create a small source tree.

    src/
      a/
        b.txt        "bee"
        deep/
          d.bin      4096 bytes
      c.txt          "hello world"
      empty.txt      ""
      link -> c.txt
    """
    src = tmp_path / "src"
    (src / "a" / "deep").mkdir(parents=True)
    (src / "a" / "b.txt").write_text("bee")
    (src / "a" / "deep" / "d.bin").write_bytes(bytes(range(256)) * 16)
    (src / "c.txt").write_text("hello world")
    (src / "empty.txt").write_bytes(b"")
    os.symlink("c.txt", src / "link")
    return src

