#!/usr/bin/env python3
"""LDAP helpers for setting up a Proxmox VE AD/LDAP realm.

Subcommands:
    filter  Turn organisational paths (``test.local/HQ/IT/Admins``) into the
            user and group filters for a realm sync.
    search  Print an ``ldapsearch`` command for looking up one account.
    decode  Decode base64 ``memberOf::`` values copied from ldapsearch output.

Inputs of ``filter`` and ``search`` are remembered between runs in a small
JSON state file (``FLEETOPS_STATE_FILE``); ``--profile`` keeps separate sets.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from fleetops.ldap_filters import (
    BASE64_ERROR,
    LEAF_CN,
    LEAF_OU,
    USER_ID_ATTRIBUTES,
    UserCondition,
    build_ldapsearch_command,
    decode_base64_values,
    dn_to_path,
    generate_filters,
)
from fleetops.logger import logger, set_verbose
from fleetops.state_store import DEFAULT_STATE_FILE, StateStore

FILTER_STATE_KEY = "ldap_pve_filter_state_v3"
SEARCH_STATE_KEY = "ldapsearch"
SEARCH_FIELDS = ("host", "base_dn", "bind_dn", "target_id", "id_attr")


def state_key(base: str, profile: str | None) -> str:
    return f"{base}:{profile}" if profile else base


def read_lines(source: str | None) -> list[str] | None:
    """Read non-empty lines from a file, ``-`` for stdin, or piped stdin.

    Returns:
        The lines, or None when nothing was given and stdin is a terminal.
    """
    if source and source != "-":
        text = Path(source).read_text(encoding="utf-8")
    elif source == "-" or not sys.stdin.isatty():
        text = sys.stdin.read()
    else:
        return None
    return [line.strip() for line in text.splitlines() if line.strip()]


def cmd_filter(args: argparse.Namespace, store: StateStore) -> int:
    key = state_key(FILTER_STATE_KEY, args.profile)
    saved = store.load(key)

    paths = read_lines(args.paths_file)
    if paths is None:
        paths = list(saved.get("paths", []))
        if paths:
            logger.info("Using %d saved path(s) from %s", len(paths), store.path)
    users_raw = args.user if args.user else list(saved.get("users", []))
    leaf = args.leaf or saved.get("leaf", LEAF_CN)

    if not paths and not users_raw:
        logger.error("No paths or users given (pass a file, pipe paths on stdin or use --user)")
        return 1

    filters = generate_filters(paths, [UserCondition.parse(u) for u in users_raw], leaf=leaf)
    store.save(key, {"paths": paths, "users": users_raw, "leaf": leaf})

    print(f"Domain:  {filters.domain}")
    print(f"Base DN: {filters.base_dn}")
    print("\nDistinguished names:")
    for dn in filters.dns:
        print(f"  {dn}")
    print("\nUser filter:")
    print(filters.user_filter)
    if args.pretty:
        print("\nUser filter (formatted):")
        print(filters.pretty_user_filter)
    print("\nGroup filter:")
    print(filters.group_filter)
    return 0


def cmd_search(args: argparse.Namespace, store: StateStore) -> int:
    key = state_key(SEARCH_STATE_KEY, args.profile)
    saved = store.load(key)
    values = {field: str(value) for field, value in saved.items() if field in SEARCH_FIELDS}
    for field in SEARCH_FIELDS:
        given = getattr(args, field)
        if given is not None:
            values[field] = given

    store.save(key, values)
    print(build_ldapsearch_command(**values))
    return 0


def cmd_decode(args: argparse.Namespace, _store: StateStore) -> int:
    lines = args.values or read_lines(None)
    if not lines:
        logger.error("No base64 values given")
        return 1

    status = 0
    for decoded in decode_base64_values("\n".join(lines)):
        if decoded == BASE64_ERROR:
            status = 1
        path = dn_to_path(decoded) if args.path and decoded != BASE64_ERROR else ""
        print(f"{decoded}  ->  {path}" if path else decoded)
    return status


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(description="LDAP filter, search and decode helpers.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output.")
    parser.add_argument(
        "--state-file", type=Path, default=DEFAULT_STATE_FILE, help="Where inputs are remembered."
    )
    parser.add_argument("--profile", help="Keep a separate set of remembered inputs.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_filter = sub.add_parser("filter", help="Build realm sync filters from paths.")
    p_filter.add_argument(
        "paths_file", nargs="?", help="File with one path per line ('-' for stdin)."
    )
    p_filter.add_argument(
        "--user",
        action="append",
        metavar="ATTR=VALUE",
        help="Additional account, e.g. sAMAccountName=jdoe (repeatable).",
    )
    p_filter.add_argument(
        "--leaf",
        type=str.upper,
        choices=[LEAF_OU, LEAF_CN],
        help="Whether the last path segment is an OU or a group CN (default CN).",
    )
    p_filter.add_argument("--pretty", action="store_true", help="Also print an indented filter.")
    p_filter.set_defaults(handler=cmd_filter)

    p_search = sub.add_parser("search", help="Print an ldapsearch command.")
    p_search.add_argument("--host", help="LDAP server (ldap:// added when no scheme).")
    p_search.add_argument("--base-dn", dest="base_dn", help="Search base.")
    p_search.add_argument("--bind-dn", dest="bind_dn", help="Bind DN; prompts for a password.")
    p_search.add_argument("--id", dest="target_id", help="Account to look up.")
    p_search.add_argument(
        "--id-attr", dest="id_attr", choices=USER_ID_ATTRIBUTES, help="Attribute matched by --id."
    )
    p_search.set_defaults(handler=cmd_search)

    p_decode = sub.add_parser("decode", help="Decode base64 attribute values.")
    p_decode.add_argument("values", nargs="*", help="Values (default: read stdin).")
    p_decode.add_argument("--path", action="store_true", help="Also show DNs as paths.")
    p_decode.set_defaults(handler=cmd_decode)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point.

    Raises:
        SystemExit: With the subcommand's exit code.
    """
    args = parse_arguments(argv)
    set_verbose(args.verbose)

    try:
        exit_code = args.handler(args, StateStore(args.state_file))
    except (OSError, ValueError) as e:
        logger.error("Error: %s", e)
        raise SystemExit(1) from e

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
