"""Packaging regression tests.

Tests that verify the installed package structure and behavior.
"""

from pathlib import Path


def test_source_layout():
    """Test that the src/ layout holds the package and its subpackages."""
    here = Path(__file__).resolve().parent
    repo_root = here.parent
    src_btmdump = repo_root / "src" / "btmdump"

    assert src_btmdump.exists(), "btmdump package should exist in src/"
    assert (src_btmdump / "kernel").exists(), "btmdump.kernel should exist in src/"
    assert (src_btmdump / "_internal").exists(), "btmdump._internal should exist"
    assert (src_btmdump / "_internal" / "io").exists(), "btmdump._internal.io should exist"


def test_import_boundary():
    """Test that the package and its kernel import cleanly."""
    import btmdump
    import btmdump.kernel.archive  # noqa: F401
    import btmdump.kernel.schema  # noqa: F401
    import btmdump.kernel.format  # noqa: F401

    # Check version: in dev mode it's "dev", in installed mode it's "1.0.0"
    assert btmdump.__version__ in ("1.0.0", "dev")


def test_console_script_entry_point():
    from btmdump.cli import main

    assert callable(main)
