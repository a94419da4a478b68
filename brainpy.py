"""brainpy entry point and REPL wiring."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import List, Optional

from interpreter import BFResourceError, BFRuntimeError, Interpreter, TracebackFormatter
from optimizer import optimize
from parser import Program, parse_source
from profiler import Profiler


def _prepare(text: str, filename: str, passes: int) -> Program:
    program = parse_source(text, filename)
    if passes:
        optimize(program, passes)
    return program


def _report_error(interpreter: Interpreter, error: BFRuntimeError, traceback_json: bool) -> None:
    formatter = TracebackFormatter(interpreter)
    print(formatter.format_text(error), file=sys.stderr)
    if traceback_json:
        print(formatter.to_json(error), file=sys.stderr)


def _run(interpreter: Interpreter, text: str, filename: str, *, passes: int, profile: bool, traceback_json: bool) -> int:
    # Optimizing, profiling and reporting walk the whole loop tree, so very
    # deep nesting can exhaust the stack outside execute() as well.
    try:
        program = _prepare(text, filename, passes)
        profiler = Profiler(program) if profile else None
        interpreter.execute(program, profiler.on_step if profiler else None)
        if profiler is not None:
            print()
            profiler.print_report()
    except BFRuntimeError as error:
        _report_error(interpreter, error, traceback_json)
        return 1
    except (MemoryError, RecursionError) as exc:
        wrapped = BFResourceError.from_exhaustion(exc)
        wrapped.step_index = interpreter.counter
        _report_error(interpreter, wrapped, traceback_json)
        return 1
    return 0


def run_repl(passes: int, profile: bool, traceback_json: bool) -> int:
    # Each line is a separate program run against a fresh tape.
    interpreter = Interpreter(filename="<repl>")
    while True:
        try:
            line = input()
        except EOFError:
            break
        _run(interpreter, line, "<repl>", passes=passes, profile=profile, traceback_json=traceback_json)
        print(repr(interpreter))
        interpreter.reset()
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="brainpy tape-language interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-O", "--optimize", action="store_true", help="Fuse adjacent opcodes before running")
    parser.add_argument("--passes", type=int, default=1, help="Optimizer passes when -O is given (default: 1)")
    parser.add_argument("-p", "--profile", action="store_true", help="Print per-loop execution statistics after the run")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit debug log records on stderr")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if args.passes < 1:
        print("--passes must be >= 1", file=sys.stderr)
        return 1
    passes = args.passes if args.optimize else 0

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(passes, args.profile, args.traceback_json)

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

    interpreter = Interpreter(filename=filename)
    return _run(
        interpreter,
        source_text,
        filename,
        passes=passes,
        profile=args.profile,
        traceback_json=args.traceback_json,
    )


if __name__ == "__main__":
    raise SystemExit(run_cli())
