"""Formatting utilities for CLI output."""

from turnprobe.protocols import Candidate, CandidateGatheringError, ProbeResult
from turnprobe.sdp import format_priority

CANDIDATE_HEADER = (
    f"{'TIME':>8}  {'COMP':<4} {'TYPE':<6} {'FOUNDATION':<12} "
    f"{'PROTO':<5} {'ADDRESS':<40} {'PORT':>5}  PRIORITY"
)


def format_candidate(candidate: Candidate) -> str:
    """One candidate row: elapsed, component, type, foundation, protocol,
    address, port and the split priority."""
    return (
        f"{candidate.elapsed:>8.3f}  {candidate.component:<4} {candidate.type:<6} "
        f"{candidate.foundation:<12} {candidate.protocol:<5} {candidate.address:<40} "
        f"{candidate.port:>5}  {format_priority(candidate.priority)}"
    )


def format_error(error: CandidateGatheringError) -> str:
    return (
        f"The server {error.url} returned an error with "
        f"code={error.error_code}: {error.error_text}"
    )


def format_results(results: list[ProbeResult], verbose: bool = False) -> str:
    """Render a full probe report.

    Args:
        results: Probe results in input order.
        verbose: Include per-server candidate tables.

    Returns:
        Report text, one verdict per line, followed by any candidate errors.
    """
    lines: list[str] = []

    for result in results:
        lines.append(result.verdict.message)
        if verbose:
            lines.append(
                f"  state={result.state.value} elapsed={result.elapsed:.3f}s "
                f"candidates={len(result.candidates)}"
            )
            if result.candidates:
                lines.append("  " + CANDIDATE_HEADER)
                lines.extend("  " + format_candidate(c) for c in result.candidates)

    errors = [error for result in results for error in result.errors]
    if errors:
        lines.append("")
        lines.append("Note: some servers returned errors during candidate gathering:")
        lines.extend(format_error(error) for error in errors)

    return "\n".join(lines)
