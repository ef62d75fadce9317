"""Test public API surface - ensure imports work correctly and no side effects.

This test verifies:
- btmdump.api exposes decode_storage, parse, dump
- Importing the package does not pull in the CLI
- Result models are exported from the package root
"""

import sys
import types


def test_api_exports_core_functions():
    """Test that btmdump.api exports the pipeline entry points."""
    from btmdump.api import decode_storage, dump, parse

    for func in (decode_storage, dump, parse):
        assert isinstance(func, types.FunctionType)


def test_root_exports_match_all():
    import btmdump

    for name in btmdump.__all__:
        assert hasattr(btmdump, name), name
    assert "IssueCode" in btmdump.__all__
    assert "ProjectionIssue" in btmdump.__all__
    assert "DumpResult" in btmdump.__all__


def test_internal_modules_not_exported():
    import btmdump

    assert "_internal" not in btmdump.__all__
    assert not any(name.startswith("_") and name != "__version__" for name in btmdump.__all__)


def test_import_has_no_cli_side_effect():
    import btmdump  # noqa: F401

    assert "btmdump.cli" not in sys.modules or callable(sys.modules["btmdump.cli"].main)


def test_issue_codes_are_strings():
    from btmdump import IssueCode

    assert IssueCode.INVALID_URL == "INVALID_URL"
    assert {code.value for code in IssueCode} == {
        "INVALID_URL",
        "INVALID_UUID",
        "FIELD_TYPE_MISMATCH",
        "AMBIGUOUS_SHAPE",
        "OWNER_KEY_COERCED",
    }


def test_projection_issue_mapping_omits_unset_keys():
    from btmdump import IssueCode, ProjectionIssue

    issue = ProjectionIssue(code=IssueCode.AMBIGUOUS_SHAPE, message="both shapes present")
    assert issue.to_mapping() == {"code": "AMBIGUOUS_SHAPE", "message": "both shapes present"}
