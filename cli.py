import argparse
import csv
import sys
from typing import List, Optional
import structlog

from config import get_settings
from errors import InputFormatError
from logging_config import configure_logging
from readers import read_instructions_from_path
from repositories import get_account_repository, get_instruction_history
from services import get_payment_engine
from writers import write_accounts

logger = structlog.get_logger()

LOG_LEVELS = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="payments-replay",
        description="Replay a CSV of payment instructions and print the final account balances as CSV."
    )
    parser.add_argument("input", help="Path to the instructions CSV file")
    parser.add_argument(
        "--precision",
        type=int,
        default=None,
        help="Fractional digits in the output (defaults to PAYMENTS_DISPLAY_PRECISION)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        type=str.upper,
        choices=LOG_LEVELS,
        help="Override PAYMENTS_LOG_LEVEL"
    )
    return parser


def run(input_path: str, precision: Optional[int] = None, output=None) -> int:
    settings = get_settings()
    output = sys.stdout if output is None else output
    precision = settings.display_precision if precision is None else precision

    account_repo = get_account_repository()
    history = get_instruction_history()
    engine = get_payment_engine(account_repo, history)

    try:
        instructions = read_instructions_from_path(input_path, encoding=settings.input_encoding)
        engine.process(instructions)
    except (OSError, UnicodeDecodeError, csv.Error, InputFormatError) as e:
        logger.error("Input could not be read", path=input_path, error=str(e))
        print(f"could not read input: {e}", file=sys.stderr)
        return 1

    try:
        write_accounts(account_repo.snapshots(precision), output)
    except OSError as e:
        logger.error("Output could not be written", error=str(e))
        print(f"could not write output: {e}", file=sys.stderr)
        return 1

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.log_level:
        settings = settings.model_copy(update={"log_level": args.log_level})
    configure_logging(settings)

    if args.precision is not None and not 0 <= args.precision <= 8:
        print("precision must be between 0 and 8", file=sys.stderr)
        return 2

    return run(args.input, precision=args.precision)


if __name__ == "__main__":
    sys.exit(main())
