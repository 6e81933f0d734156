#!/usr/bin/env python3
"""Ralph CLI entrypoint."""

import argparse
import logging
import sys

from ralph.commands import do as cmd_do_module
from ralph.commands import gates as cmd_gates_module
from ralph.commands import run as cmd_run_module
from ralph.commands import status as cmd_status_module


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_run(args):
    return cmd_run_module.cmd_run(args)


def cmd_do(args):
    return cmd_do_module.cmd_do(args)


def cmd_status(args):
    return cmd_status_module.cmd_status(args)


def cmd_gates(args):
    return cmd_gates_module.cmd_gates(args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ralph', description='Autonomous coding loop over a markdown task list')
    parser.add_argument('--config', '-c', help='Path to ralph.yaml')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # ralph run
    p_run = subparsers.add_parser('run', help='Run iterations over the task list')
    p_run.add_argument('--iterations', '-n', type=int, default=10, help='Maximum iterations (default: 10)')
    p_run.add_argument('--hitl', action='store_true', help='Confirm between iterations, continue past errors')
    p_run.set_defaults(func=cmd_run)

    # ralph do
    p_do = subparsers.add_parser('do', help='Run the loop on a single task')
    p_do.add_argument('description', nargs='+', help='What to do')
    p_do.add_argument('--max', type=int, default=cmd_do_module.DEFAULT_MAX_ITERATIONS,
                      help=f'Maximum iterations (default: {cmd_do_module.DEFAULT_MAX_ITERATIONS})')
    p_do.add_argument('--hitl', action='store_true', help='Confirm between iterations, continue past errors')
    p_do.set_defaults(func=cmd_do)

    # ralph status
    p_status = subparsers.add_parser('status', help='Show task list progress')
    p_status.set_defaults(func=cmd_status)

    # ralph gates
    p_gates = subparsers.add_parser('gates', help='Run quality gates once')
    p_gates.set_defaults(func=cmd_gates)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nAborted by user")
        return 130


if __name__ == '__main__':
    sys.exit(main())
