"""Letterbox entry point and REPL wiring."""
from __future__ import annotations
import argparse
import sys
from typing import List, Optional, Sequence

from interpreter import DEFAULT_LOOP_LIMIT, Evaluator, TracebackFormatter
from lexer import LetterboxParseError, LetterboxRuntimeError
from storage import Storage


def _read_source(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()
    except OSError as exc:
        raise LetterboxParseError(f"Failed to read {path}: {exc}") from exc


def _run_once(
    source: str,
    filename: str,
    storage: Storage,
    inputs: Sequence[str],
    loop_limit: int,
    verbose: bool,
    traceback_json: bool = False,
) -> int:
    output: List[str] = []
    evaluator = Evaluator(
        source.strip(),
        storage,
        inputs,
        output,
        loop_limit,
        filename=filename,
        verbose=verbose,
    )
    status = 0
    try:
        evaluator.run()
    except LetterboxRuntimeError as error:
        status = 1
        # flush whatever was printed before the failure first
        if output:
            print("".join(output))
            output.clear()
        formatter = TracebackFormatter(evaluator)
        print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
        if traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
    if output:
        print("".join(output))
    return status


def run_repl(inputs: Sequence[str], loop_limit: int, verbose: bool) -> int:
    print("\x1b[38;2;153;221;255mLETTERBOX\033[0m REPL. Enter instructions, 'quit' to exit.")
    storage = Storage()
    while True:
        try:
            line = input("> ")
        except EOFError:
            print()
            break
        if line.strip().lower() == "quit":
            break
        if not line.strip():
            continue
        _run_once(line, "<repl>", storage, inputs, loop_limit, verbose)
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Letterbox reference interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-i", "--input", dest="inputs", action="append", default=[], help="Append a value to the program's input vector")
    parser.add_argument("--loop-limit", type=int, default=DEFAULT_LOOP_LIMIT, help="Maximum iterations per loop")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit variable snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    args = parser.parse_args(argv)

    if args.loop_limit < 0:
        print("--loop-limit must be non-negative", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(args.inputs, args.loop_limit, verbose=args.verbose)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            source_text = _read_source(filename)
        except LetterboxParseError as error:
            print(error, file=sys.stderr)
            return 1

    return _run_once(
        source_text,
        filename,
        Storage(),
        args.inputs,
        args.loop_limit,
        args.verbose,
        traceback_json=args.traceback_json,
    )


if __name__ == "__main__":
    raise SystemExit(run_cli())
