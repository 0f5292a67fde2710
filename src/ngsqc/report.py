from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from jinja2 import Template

from .errors import IncompleteReport
from .models import CohortReport, FacetResult, QCReport
from .utils import ensure_outdir, write_json

logger = logging.getLogger(__name__)


def build_report(
    *,
    sample: str,
    source: str,
    requested: Sequence[str],
    results: Mapping[str, FacetResult],
    records_processed: Sequence[int],
    version: str = "",
) -> QCReport:
    """Assemble a :class:`QCReport` from finalized facet results.

    Every requested facet must be present; otherwise :class:`IncompleteReport`
    is raised naming the missing ones (a partial report is never returned).
    """
    missing = [name for name in requested if name not in results]
    if missing:
        raise IncompleteReport(
            f"Sample {sample}: no result for requested facet(s) {', '.join(missing)}",
            missing=missing,
        )
    facets = {name: results[name] for name in requested}
    return QCReport(
        sample=sample,
        source=source,
        facets=facets,
        records_processed=tuple(records_processed),
        passes_executed=len(records_processed),
        version=version,
    )


def merge_reports(reports: Iterable[QCReport]) -> CohortReport:
    """Gather per-sample reports into one cohort, keeping input order.

    The inputs are not modified and nothing is recomputed.
    """
    ordered: List[QCReport] = []
    seen = set()
    for report in reports:
        if report.sample in seen:
            raise ValueError(f"Duplicate sample name in cohort: {report.sample}")
        seen.add(report.sample)
        ordered.append(report)
    return CohortReport(tuple(ordered))


def write_report_json(report: QCReport, path: str | Path) -> Path:
    path = Path(path)
    ensure_outdir(path.parent)
    write_json(path, report.to_dict())
    logger.info("Wrote %s", path)
    return path


def write_cohort_json(cohort: CohortReport, path: str | Path) -> Path:
    path = Path(path)
    ensure_outdir(path.parent)
    write_json(path, cohort.to_dict())
    logger.info("Wrote %s", path)
    return path


_STYLE = """
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 6px 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
"""

_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>ngsqc: {{ report.sample }}</title>
  <style>{{ style }}</style>
</head>
<body>

<h1>Alignment QC: {{ report.sample }}</h1>

<h2>Run summary</h2>
<table>
  <tr><th>Source</th><td><code>{{ report.source }}</code></td></tr>
  <tr><th>Passes executed</th><td>{{ report.passes_executed }}</td></tr>
  <tr><th>Records per pass</th><td>{{ report.records_processed | join(", ") }}</td></tr>
  <tr><th>Facets</th><td>{{ report.facets | join(", ") }}</td></tr>
</table>

{% if general %}
<h2>General metrics</h2>
<div class="grid">
  <div class="card">
    <h3>Counts</h3>
    <table>
    {% for key, value in general.counts | dictsort %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
    {% endfor %}
    </table>
  </div>
  <div class="card">
    <h3>Ratios</h3>
    <table>
    {% for key, value in general.ratios | dictsort %}
      <tr><th>{{ key }}</th><td>{{ pct(value) }}</td></tr>
    {% endfor %}
    </table>
    <h3>Mate consistency</h3>
    <table>
    {% for key, value in general.mates | dictsort %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
    {% endfor %}
    </table>
  </div>
</div>
{% endif %}

{% if coverage %}
<h2>Coverage</h2>
<table>
  <tr><th>Bin width</th><td>{{ coverage.bin_width }}</td></tr>
  <tr><th>Mean coverage</th><td>{{ num(coverage.mean_coverage) }}</td></tr>
  <tr><th>Median coverage</th><td>{{ num(coverage.median_coverage) }}</td></tr>
</table>
<table>
  <tr><th>Reference</th><th>Length</th><th>Mean</th><th>Median</th><th>Median / mean</th></tr>
  {% for name, ref in coverage.per_reference.items() %}
  <tr><td>{{ name }}</td><td>{{ ref.length }}</td><td>{{ num(ref.mean_coverage) }}</td>
      <td>{{ num(ref.median_coverage) }}</td><td>{{ num(ref.median_over_mean_coverage) }}</td></tr>
  {% endfor %}
</table>
{% endif %}

{% if edits %}
<h2>Edits</h2>
<table>
  <tr><th>Aligned bases</th><td>{{ edits.aligned_bases }}</td></tr>
  <tr><th>Substitution rate</th><td>{{ pct(edits.substitution_rate) }}</td></tr>
  <tr><th>Edit rate</th><td>{{ pct(edits.edit_rate) }}</td></tr>
  <tr><th>Records with edits</th><td>{{ edits.records_with_edits }}</td></tr>
</table>
<table>
  <tr><th>Operation</th><th>Events</th><th>Bases</th></tr>
  {% for op, n in edits.events | dictsort %}
  <tr><td>{{ op }}</td><td>{{ n }}</td><td>{{ edits.bases[op] }}</td></tr>
  {% endfor %}
</table>
{% endif %}

{% if features %}
<h2>Genomic features</h2>
<table>
  <tr><th>Category</th><th>Records</th></tr>
  {% for cat in features.categories %}
  <tr><td>{{ cat }}</td><td>{{ features.counts[cat] }}</td></tr>
  {% endfor %}
  <tr><td><em>no overlap</em></td><td>{{ features.no_overlap }}</td></tr>
</table>
{% endif %}

<h2>Distributions</h2>
<table>
  <tr><th>Facet</th><th>Records</th><th>Mean</th><th>Median</th><th>p05</th><th>p95</th></tr>
  {% for name, summary in distributions %}
  <tr><td>{{ name }}</td><td>{{ summary.total }}</td><td>{{ num(summary.mean) }}</td>
      <td>{{ num(summary.median) }}</td><td>{{ num(summary.p05) }}</td><td>{{ num(summary.p95) }}</td></tr>
  {% endfor %}
</table>

<hr>
<p class="small">ngsqc {{ report.version }}</p>
</body>
</html>"""
)

_COHORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>ngsqc cohort</title>
  <style>{{ style }}</style>
</head>
<body>

<h1>Cohort alignment QC</h1>
<p class="small">{{ rows | length }} sample(s)</p>

<table>
  <tr><th>Sample</th><th>Records</th><th>Mapped</th><th>Proper pairs</th><th>Duplicates</th>
      <th>Mean coverage</th><th>Substitution rate</th></tr>
  {% for row in rows %}
  <tr><td>{{ row.sample }}</td><td>{{ row.records }}</td><td>{{ pct(row.mapped) }}</td>
      <td>{{ pct(row.proper_pair) }}</td><td>{{ pct(row.duplicate) }}</td>
      <td>{{ num(row.mean_coverage) }}</td><td>{{ pct(row.substitution_rate) }}</td></tr>
  {% endfor %}
</table>

<hr>
<p class="small">ngsqc {{ version }}</p>
</body>
</html>"""
)


def _pct(value: Any) -> str:
    if value is None:
        return "N/A"
    return f"{100.0 * float(value):.2f}%"


def _num(value: Any) -> str:
    if value is None:
        return "N/A"
    return f"{float(value):.2f}"


def _data(report: QCReport, name: str) -> Dict[str, Any] | None:
    res = report.facets.get(name)
    return None if res is None else res.to_dict()["data"]


def _distributions(report: QCReport) -> List[tuple]:
    out = []
    for name, key in (
        ("template_length", "histogram"),
        ("gc_content", "histogram"),
        ("quality_scores", "per_record_mean"),
        ("general", "mapq"),
    ):
        data = _data(report, name)
        if data is not None and isinstance(data.get(key), dict):
            out.append((f"{name}.{key}", data[key]))
    return out


def render_report_html(report: QCReport, path: str | Path) -> Path:
    """Render a single-sample HTML summary next to the JSON report."""
    path = Path(path)
    ensure_outdir(path.parent)
    html = _REPORT_TEMPLATE.render(
        style=_STYLE,
        report=report,
        general=_data(report, "general"),
        coverage=_data(report, "coverage"),
        edits=_data(report, "edits"),
        features=_data(report, "genomic_features"),
        distributions=_distributions(report),
        pct=_pct,
        num=_num,
    )
    path.write_text(html, encoding="utf-8")
    logger.info("Wrote %s", path)
    return path


def _cohort_row(report: QCReport) -> Dict[str, Any]:
    general = _data(report, "general") or {}
    ratios = general.get("ratios", {})
    coverage = _data(report, "coverage") or {}
    edits = _data(report, "edits") or {}
    return {
        "sample": report.sample,
        "records": report.records_processed[0] if report.records_processed else 0,
        "mapped": ratios.get("mapped_fraction"),
        "proper_pair": ratios.get("proper_pair_fraction"),
        "duplicate": ratios.get("duplicate_fraction"),
        "mean_coverage": coverage.get("mean_coverage"),
        "substitution_rate": edits.get("substitution_rate"),
    }


def render_cohort_html(cohort: CohortReport, path: str | Path, *, version: str = "") -> Path:
    path = Path(path)
    ensure_outdir(path.parent)
    html = _COHORT_TEMPLATE.render(
        style=_STYLE,
        rows=[_cohort_row(r) for r in cohort],
        version=version,
        pct=_pct,
        num=_num,
    )
    path.write_text(html, encoding="utf-8")
    logger.info("Wrote %s", path)
    return path
