import argparse
import asyncio
import logging
import sys

from slate.slate_config import load_config, set_config
from slate.slate_document import Document
from slate.slate_formulas import repeat_formula
from slate.slate_printer import format_value
from slate.slate_runtime import FUNCTIONS, OutlineRunner
from slate.slate_suggestions import get_suggested_functions


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="slate", description="Evaluate a slate outline file.")
    parser.add_argument("outline", help="YAML outline: {root: id, nodes: {id: {value, children}}}")
    parser.add_argument("--root", help="id of the node to evaluate from (defaults to the file's root)")
    parser.add_argument("--suggest", metavar="ID", help="print ranked function suggestions for a node")
    parser.add_argument("--repeat", metavar="ID", help="repeat the formula in a node across the outline")
    parser.add_argument("--config", help="explicit config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def find_scope(root_scope, node_id):
    matches = root_scope.extract_data_in_scope(lambda s: s if s.id == node_id else None,
                                               skip_transcluded_scopes=True)
    return matches[0] if matches else None


def print_tree(scope, depth=0, out=None):
    out = out or sys.stdout
    line = "  " * depth + "- " + scope.source
    rendered = scope.label
    if scope.bullet.key is not None:
        rendered = f"{scope.bullet.key.value}: {rendered}"
    if rendered != scope.source:
        line += f"  => {rendered}"
    print(line, file=out)
    for result in scope.computation_results:
        print("  " * (depth + 1) + f"* {result.name}: {format_value(result.data)}", file=out)
    for child in scope.child_scopes:
        print_tree(child, depth + 1, out)


async def run(args) -> int:
    document, declared_root = Document.load_yaml(args.outline)
    root_id = args.root or declared_root
    if root_id is None or root_id not in document:
        print(f"Error: root node {root_id!r} not found", file=sys.stderr)
        return 1

    runner = OutlineRunner(document, root_id)
    runner.start()
    root_scope = await runner.settle()

    if args.suggest:
        scope = find_scope(root_scope, args.suggest)
        if scope is None:
            print(f"Error: node {args.suggest!r} not found", file=sys.stderr)
            return 1
        for suggestion in get_suggested_functions(scope, FUNCTIONS):
            rank = "-" if suggestion.rank is None else f"{suggestion.rank:g}"
            print(f"{rank:>5}  {suggestion.expression}")
        return 0

    if args.repeat:
        scope = find_scope(root_scope, args.repeat)
        if scope is None:
            print(f"Error: node {args.repeat!r} not found", file=sys.stderr)
            return 1
        insertions = repeat_formula(document, scope, FUNCTIONS)
        if not insertions:
            print("Formula cannot be repeated here")
        for ins in insertions:
            print(f"{ins.parent_id}[{ins.index}] {ins.formula}")
        root_scope = await runner.settle()

    print_tree(root_scope)
    runner.close()
    return 0


def main(argv=None):
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")
    try:
        set_config(load_config(args.config))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
