"""
ralph gates - Run the quality gates once.
"""

from ralph.commands.run import load_valid_config
from ralph.lib.quality_gates import format_summary, load_gate_config, run_quality_gates


def cmd_gates(args) -> int:
    config = load_valid_config(args, require_auth=False)
    if config is None:
        return 2

    checks = load_gate_config(config.working_dir)
    print(f"Running {len(checks)} quality gates in {config.working_dir}")
    report = run_quality_gates(config.working_dir, checks, config.gate_timeout)
    print(format_summary(report))
    return 0 if report.all_passed else 1
