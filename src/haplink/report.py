from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, List

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>HapLink Report</title>
  <style>
    body { font-family: "Helvetica Neue", Arial, sans-serif; max-width: 960px; margin: 2em auto; color: #222; }
    header { border-bottom: 2px solid #3b6ea5; margin-bottom: 1em; }
    dl.params { display: grid; grid-template-columns: max-content auto; gap: 4px 16px; }
    dl.params dt { font-weight: bold; }
    dl.params dd { margin: 0; font-family: monospace; }
    table.haps { border-collapse: collapse; width: 100%; }
    table.haps th { border-bottom: 2px solid #3b6ea5; text-align: left; padding: 4px 8px; }
    table.haps td { border-bottom: 1px solid #e3e3e3; padding: 4px 8px; font-family: monospace; }
    figure { display: inline-block; width: 45%; margin: 0 2% 1em 0; vertical-align: top; }
    figure img { width: 100%; }
    figcaption, .muted { color: #777; font-size: 0.85em; }
  </style>
</head>
<body>

<header>
  <h1>HapLink Report</h1>
  <p class="muted">HapLink {{ version }} &middot; {{ generated_at }}</p>
</header>

<h2>Parameters</h2>
<dl class="params">
  <dt>Alignment</dt><dd>{{ bam_path }}</dd>
  <dt>Variants</dt><dd>{{ vcf_path }} ({{ n_variants }} variants)</dd>
  <dt>Evidence</dt><dd>{{ method }}{% if iterations %}, {{ iterations }} pseudo-reads per haplotype{% endif %}</dd>
  <dt>Minimum depth</dt><dd>{{ min_depth }}</dd>
  <dt>Significance level</dt><dd>{{ alpha }}</dd>
</dl>

<h2>Search</h2>
<p>
  Tested {{ candidates_evaluated }} of {{ candidates_total }} candidate haplotypes
  in {{ "%.1f"|format(runtime_seconds) }} s{% if stopped_early %} (stopped early by the candidate or time budget){% endif %};
  {{ haplotypes|length }} passed.
</p>

<h2>Haplotypes</h2>
{% if haplotypes %}
<table class="haps">
  <tr><th>Haplotype</th><th>Size</th><th>Observed</th><th>Depth</th><th>D</th><th>p-value</th></tr>
  {% for h in haplotypes %}
  <tr>
    <td>{{ h.name }}</td>
    <td>{{ h.size }}</td>
    <td>{{ h.observed }}</td>
    <td>{{ h.depth }}</td>
    <td>{{ "%.4f"|format(h.linkage_disequilibrium) }}</td>
    <td>{{ "%.3g"|format(h.pvalue) }}</td>
  </tr>
  {% endfor %}
</table>
{% else %}
<p class="muted">No haplotype passed the depth and significance thresholds.</p>
{% endif %}

{% if plots %}
<h2>Plots</h2>
<figure><img src="{{ plots.size_counts }}" alt="haplotype sizes"><figcaption>Accepted haplotypes by size</figcaption></figure>
<figure><img src="{{ plots.pvalue_hist }}" alt="p-value histogram"><figcaption>Linkage significance</figcaption></figure>
<figure><img src="{{ plots.linkage_scatter }}" alt="linkage scatter"><figcaption>Disequilibrium against depth</figcaption></figure>
{% endif %}

<h2>Notes</h2>
<p class="muted">
  haplotypes.yaml lists every accepted haplotype with its occurrence counts; summary.json holds
  the run parameters. Haplotypes are phased only within one read (direct evidence) or one
  stitched pseudo-read (simulated evidence). Simulated evidence always yields the requested
  number of pseudo-reads, so its power is approximate. Nested haplotypes can all be significant.
</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    haplotypes: List[Dict[str, Any]],
    vcf_path: str,
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        bam_path=run.get("bam_path"),
        vcf_path=vcf_path,
        n_variants=run.get("n_variants"),
        method=run.get("method"),
        min_depth=run.get("min_depth"),
        alpha=run.get("alpha"),
        iterations=run.get("iterations"),
        candidates_total=run.get("candidates_total", 0),
        candidates_evaluated=run.get("candidates_evaluated", 0),
        stopped_early=run.get("stopped_early", False),
        runtime_seconds=float(run.get("runtime_seconds", 0.0)),
        haplotypes=haplotypes,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
