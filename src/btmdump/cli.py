"""btmdump CLI: dump a background items store as text or JSON."""

import argparse
import logging
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path


def main():
    """Main CLI entry point for btmdump."""
    # Get version for --version argument (handle PackageNotFoundError)
    try:
        btmdump_version = get_version("btmdump")
    except PackageNotFoundError:
        btmdump_version = "dev"

    parser = argparse.ArgumentParser(
        prog="btmdump",
        description="btmdump: decode a background task management store into item records"
    )
    parser.add_argument("--version", action="version", version=f"btmdump {btmdump_version}")
    parser.add_argument(
        "path",
        type=Path,
        nargs="?",
        default=None,
        help="Path to a BackgroundItems-v*.btm store (defaults to the newest store on this system)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit the structured projection as JSON instead of verbose text"
    )
    parser.add_argument(
        "--indent",
        type=int,
        default=None,
        help="Indent JSON output by this many spaces (default: compact canonical JSON)"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the dump to this file instead of stdout"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging on stderr"
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output besides the dump itself."
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if args.quiet and not args.debug:
        # Recoverable issues are summarized below; don't repeat them per record.
        logging.getLogger("btmdump").setLevel(logging.ERROR)

    # Lazy import: keep --help / --version independent of the kernel
    from ._internal.accounts import lookup_account_name
    from ._internal.canonical_json import canonical_dumps
    from .api import FATAL_ERRORS, load_storage, summarize
    from .kernel.format import to_mapping, to_text

    try:
        store_path, storage = load_storage(args.path)
    except FATAL_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        content = canonical_dumps(to_mapping(storage, path=str(store_path)), indent=args.indent)
    else:
        lines = [f"path: {store_path}"]
        lines.extend(to_text(storage, account_name=lookup_account_name))
        content = "\n".join(lines)

    if args.output is not None:
        try:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(content + "\n", encoding="utf-8")
        except OSError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        print(content)

    if not args.quiet:
        result = summarize(storage, store_path)
        status = "PARTIAL" if result.partial else "OK"
        print(f"[{status}] Decoded {result.record_count} record(s) for {len(result.owners)} owner(s)", file=sys.stderr)
        if args.output is not None:
            print(f"  Output: {args.output}", file=sys.stderr)
        if result.partial:
            print(f"  Issues: {len(result.issues)}", file=sys.stderr)
            for issue in result.issues:
                subject = issue.identifier or issue.owner or "storage"
                print(f"    - {subject}: {issue.code.value}: {issue.message}", file=sys.stderr)

    sys.exit(0)


if __name__ == "__main__":
    main()
