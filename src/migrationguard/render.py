"""Report renderer - human-readable text for an AnalysisReport."""

from __future__ import annotations

import textwrap

from migrationguard.report import AnalysisReport, OperationResult
from migrationguard.rules import Remediation, Status

_MARKS = {
    Status.SAFE: "ok",
    Status.CONDITIONALLY_SAFE: "??",
    Status.UNSAFE: "!!",
}


def _wrap(text: str, indent: str = "        ") -> str:
    return textwrap.fill(text, width=88, initial_indent=indent, subsequent_indent=indent)


def _render_result(result: OperationResult, *, verbose: bool) -> list[str]:
    verdict = result.verdict
    mark = _MARKS[verdict.status]
    assured = " (assured)" if verdict.assured else ""
    lines = [f"  [{mark}] {result.operation.describe()}{assured}"]
    if verdict.status is Status.SAFE and not verbose:
        return lines
    lines.append(_wrap(verdict.rationale))
    if verdict.remediation is not Remediation.NONE:
        lines.append(f"        remediation: {verdict.remediation.value}")
    return lines


def render_text(report: AnalysisReport, *, verbose: bool = False) -> str:
    """Render a report grouped by migration unit.

    Safe operations are listed without rationale unless ``verbose`` is set.
    """
    lines = [f"Migration safety report for {report.engine}", ""]

    current: str | None = None
    for result in report.results:
        if result.ref.unit_name != current:
            if current is not None:
                lines.append("")
            current = result.ref.unit_name
            lines.append(f"{current}:")
        lines.extend(_render_result(result, verbose=verbose))

    if not report.results:
        lines.append("No operations to analyze.")

    if report.violations:
        lines.append("")
        lines.append("Sequencing violations:")
        for v in report.violations:
            assured = " (assured)" if v.assured else ""
            lines.append(f"  [{v.rule_id}] {v.first} / {v.second}{assured}")
            lines.append(_wrap(v.message))

    counts = report.counts()
    lines.append("")
    lines.append(
        f"{counts['safe']} safe, {counts['conditionally_safe']} conditionally safe, "
        f"{counts['unsafe']} unsafe, {len(report.violations)} sequencing violation(s)"
    )
    lines.append(f"Worst severity: {report.worst_severity().value}")
    return "\n".join(lines) + "\n"
