"""Command line entry point and REPL."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import List, Optional, Tuple

from extensions import FunctionTable, NASLExtensionError, build_default_functions, load_function_tables
from interpreter import (
    Context,
    ErrorFormatter,
    FSPluginLoader,
    Interpreter,
    NoOpLoader,
    Register,
    ScriptResult,
    TYPE_NULL,
    to_display,
)
from lexer import LexErrorKind, NASLLexError
from parser import NASLSyntaxError, Parser, SyntaxErrorKind


logger = logging.getLogger("nasl")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s" if not verbose else "%(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )


def build_context(target: str, include_dir: Optional[str], extensions: List[str]) -> Context:
    tables: Tuple[FunctionTable, ...] = load_function_tables(extensions) + (build_default_functions(),)
    logger.debug("loaded %d function tables", len(tables))
    loader = FSPluginLoader(include_dir) if include_dir else NoOpLoader()
    return Context(target=target, loader=loader, logger=logging.getLogger("nasl.script"), functions=tables)


def _report(result: ScriptResult, formatter: ErrorFormatter, *, verbose: bool, as_json: bool) -> None:
    assert result.error is not None
    print(formatter.format_text(result.error, verbose=verbose), file=sys.stderr)
    if as_json:
        print(formatter.to_json(result.error), file=sys.stderr)


def _is_incomplete(text: str) -> bool:
    """True when text only fails because more input is needed."""
    try:
        for _ in Parser(text):
            pass
    except NASLSyntaxError as error:
        return error.kind is SyntaxErrorKind.UNEXPECTED_END
    except NASLLexError as error:
        return error.kind in (LexErrorKind.UNCLOSED_STRING, LexErrorKind.UNCLOSED_COMMENT)
    return False


def run_repl(context: Context, verbose: bool) -> int:
    print("NASL REPL. Enter statements; unfinished input continues on the next line.")
    interpreter = Interpreter(Register(), context, filename="<repl>")
    formatter = ErrorFormatter(interpreter)
    buffer: List[str] = []

    while True:
        try:
            line = input("... " if buffer else ">>> ")
        except EOFError:
            print()
            break

        buffer.append(line)
        source_text = "\n".join(buffer)
        if line.strip() and _is_incomplete(source_text):
            continue
        buffer.clear()
        if not source_text.strip():
            continue

        results = list(interpreter.execute(source_text))
        for result in results:
            if result.error is not None:
                _report(result, formatter, verbose=verbose, as_json=False)
            elif result.value is not None and result.value.type != TYPE_NULL:
                print(to_display(result.value))
        if results and results[-1].ok and results[-1].exited:
            return _exit_code(results[-1])
    return 0


def _exit_code(result: ScriptResult) -> int:
    value = result.value
    if value is None or value.type == TYPE_NULL:
        return 0
    try:
        return int(value.value)
    except (TypeError, ValueError):
        return 1


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="NASL script interpreter")
    parser.add_argument("program", nargs="?", help="Script path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-t", "--target", default="", help="Target host the script runs against")
    parser.add_argument("-i", "--include-dir", default=None, help="Directory that include() loads files from")
    parser.add_argument(
        "-e",
        "--extension",
        dest="extensions",
        action="append",
        default=[],
        help="Native function extension (.py) or .naslx pointer file; may be repeated",
    )
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Debug logging and register snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON error reports")
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    try:
        context = build_context(args.target, args.include_dir, args.extensions)
    except NASLExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(context, verbose=args.verbose)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(Register(), context, filename=filename)
    formatter = ErrorFormatter(interpreter)
    failed = False
    for result in interpreter.execute(source_text):
        if result.error is not None:
            failed = True
            _report(result, formatter, verbose=args.verbose, as_json=args.traceback_json)
            continue
        if result.exited:
            return _exit_code(result)
    return 1 if failed else 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
