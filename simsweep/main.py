import argparse
import os
import sys

from simsweep.core.result_log import load_result_log
from simsweep.simulation.simulation import main as simulation_main


def print_summary(log_path: str, delimiter: str = ",") -> None:
    """Prints run and failure counts of an existing result log.

    Args:
        log_path: Path to the result log.
        delimiter: Field delimiter of the log.
    """
    if not os.path.exists(log_path):
        print(f"Error: Result log not found at '{log_path}'", file=sys.stderr)
        sys.exit(1)

    try:
        df = load_result_log(log_path, delimiter)
    except Exception as e:
        print(f"Error reading result log '{log_path}': {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Result log: {log_path}")
    print(f"Columns: {len(df.columns)}")
    print(f"Runs: {len(df)}")

    if "Error" not in df.columns:
        return
    errors = df["Error"].fillna("").astype(str).str.strip()
    failed = errors[(errors != "N/A") & (errors != "")]
    print(f"Failed runs: {len(failed)}")
    for message, count in failed.value_counts().items():
        print(f"  {count} x {message}")


def main() -> None:
    """Main entry point for the simsweep command-line interface.

    `simsweep run -c config.json` runs a sweep, `simsweep summary <log>`
    summarizes an existing result log. Without a command, `-c` or a default
    `config.json` in the working directory is run.
    """
    parser = argparse.ArgumentParser(
        description="simsweep - fault-tolerant simulation parameter sweeps",
    )
    parser.add_argument(
        "-c", "--config", type=str, help="Path to the JSON configuration file."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run a parameter sweep.")
    run_parser.add_argument(
        "-c",
        "--config",
        dest="run_config",
        type=str,
        default=None,
        help="Path to the JSON configuration file.",
    )

    summary_parser = subparsers.add_parser(
        "summary", help="Summarize an existing result log."
    )
    summary_parser.add_argument("log_path", type=str, help="Path to the result log.")
    summary_parser.add_argument(
        "-d", "--delimiter", type=str, default=",", help="Field delimiter."
    )

    args = parser.parse_args()

    if args.command == "summary":
        print_summary(args.log_path, args.delimiter)
        return

    config_path = getattr(args, "run_config", None) or args.config
    if not config_path:
        if os.path.exists("config.json"):
            print("INFO: No config file specified, using default: config.json")
            config_path = "config.json"
        else:
            parser.print_help(sys.stderr)
            sys.exit(1)

    if not os.path.exists(config_path):
        print(f"Error: Config file not found at '{config_path}'", file=sys.stderr)
        sys.exit(1)

    simulation_main(config_path)


if __name__ == "__main__":
    main()
