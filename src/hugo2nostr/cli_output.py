"""CLI output formatting for batch summaries and exit codes."""

import json

from .models import BatchSummary

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FAILED = 2
EXIT_ERROR = 3


def format_summary(summary: BatchSummary) -> str:
    """Format a summary as the one-line human readable result.

    Example: "Done: 2 published, 1 skipped, 0 drafts, 0 failed"
    """
    parts = [f"{count} {name}" for name, count in summary.as_dict().items()]
    return "Done: " + ", ".join(parts)


def format_summary_json(summary: BatchSummary, site: str | None = None) -> str:
    """Format a summary as a single-line JSON object.

    CONTRACT:
      Inputs:
        - summary: BatchSummary
        - site: site name, included when given

      Outputs:
        - json_string: counters in display order, plus "exit_code" and optional "site"

      Properties:
        - Deterministic: same summary yields the same string
        - Single-line: no embedded newlines
    """
    output = {}
    if site is not None:
        output["site"] = site
    output.update(summary.as_dict())
    output["exit_code"] = exit_code(summary)
    return json.dumps(output, ensure_ascii=False, separators=(", ", ": "))


def exit_code(summary: BatchSummary) -> int:
    """Map a summary to the process exit code (EXIT_OK, EXIT_PARTIAL or EXIT_FAILED).

    Skips alone are a success.
    """
    return summary.exit_code()
