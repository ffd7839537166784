#!/usr/bin/env python3
"""
AuthShell -- authentication shell with an observable state store and a
policy-gated action gateway.

Usage:
  python main.py                              # table of every declared intent
  python main.py AUTH_SIGNOUT NAVIGATE_TO_LOGIN
  python main.py --category navigation
  python main.py --json
  python main.py --serve --host 0.0.0.0 --port 8000

Environment variables are read by core.config (see Settings); DEBUG=true lets
the server start without a SECRET_KEY.
"""

import argparse
import json
import sys
from typing import Optional

from core.intents import IntentCategory, IntentDeclaration, default_registry


def _row(decl: IntentDeclaration) -> dict:
    return {
        "name": decl.name,
        "category": decl.category.value if decl.category else None,
        "requires_auth": decl.requires_authenticated_actor,
        "tolerance": decl.instability_tolerance,
        "reversible": decl.reversible,
        "description": decl.description,
    }


def _print_table(decls: list[IntentDeclaration]) -> None:
    width = max((len(d.name) for d in decls), default=10)
    print(f"  {'INTENT':<{width}}  {'CATEGORY':<10}  AUTH  TOL    REV  DESCRIPTION")
    for d in decls:
        category = d.category.value if d.category else "-"
        auth = "yes" if d.requires_authenticated_actor else "no"
        rev = "yes" if d.reversible else "no"
        print(f"  {d.name:<{width}}  {category:<10}  {auth:<4}  {d.instability_tolerance:<5.2f}  {rev:<3}  {d.description}")


def select_intents(names: list[str], category: Optional[str]) -> tuple[list[IntentDeclaration], list[str]]:
    """Return (matching declarations, unknown names) for the CLI filters."""
    registry = default_registry()
    if names:
        found, unknown = [], []
        for name in names:
            decl = registry.get(name.upper())
            if decl is None:
                unknown.append(name)
            else:
                found.append(decl)
    else:
        found, unknown = list(registry), []
    if category:
        found = [d for d in found if d.category == IntentCategory(category)]
    return found, unknown


def _serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="AuthShell -- inspect the intent registry or run the API server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("intents", nargs="*", metavar="INTENT", help="Intent name(s) to describe")
    parser.add_argument(
        "--category",
        choices=[c.value for c in IntentCategory],
        help="Only show intents in this category",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API under uvicorn")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address for --serve (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port for --serve (default: 8000)")
    args = parser.parse_args(argv)

    if args.serve:
        _serve(args.host, args.port)
        return 0

    decls, unknown = select_intents(args.intents, args.category)
    for name in unknown:
        print(f"  [!] Unknown intent: {name}", file=sys.stderr)

    if args.json:
        print(json.dumps([_row(d) for d in decls], indent=2))
    elif decls:
        _print_table(decls)
    return 1 if unknown else 0


if __name__ == "__main__":
    sys.exit(main())
