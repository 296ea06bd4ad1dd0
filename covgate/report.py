"""
Coverage summaries and report writers.

summarize() projects a CoverageModel into a CoverageSummary. The writers
render a model in one of the output formats:

  lcov       LCOV tracefile, for coverage services
  json       covgate JSON export (per-file regions with hit counts)
  cobertura  Cobertura XML
  html       index.html plus one annotated page per source file
  text       file table printed to stdout

Displayed percentages are rounded; the gate always uses the full value.
"""

import html
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Tuple
from xml.etree import ElementTree as ET

from .model import CoverageModel, FileCoverage, relative_name, resolve_source

FORMATS = ("lcov", "json", "cobertura", "html", "text")

DEFAULT_OUTPUTS = {
    "lcov": "coverage/lcov.info",
    "json": "coverage/coverage.json",
    "cobertura": "coverage/coverage.xml",
    "html": "coverage",
    "text": None,
}

JSON_SCHEMA_VERSION = 1


def _pct(hit: int, found: int) -> Optional[float]:
    if found == 0:
        return None
    return hit / found * 100


@dataclass(frozen=True)
class FileSummary:
    filename: str
    lines_found: int
    lines_hit: int
    branches_found: int = 0
    branches_hit: int = 0
    functions_found: int = 0
    functions_hit: int = 0

    @property
    def percentage(self) -> Optional[float]:
        return _pct(self.lines_hit, self.lines_found)

    @property
    def branch_percentage(self) -> Optional[float]:
        return _pct(self.branches_hit, self.branches_found)


@dataclass(frozen=True)
class CoverageSummary:
    files: Tuple[FileSummary, ...] = ()
    warnings: Tuple[str, ...] = ()
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def lines_found(self) -> int:
        return sum(f.lines_found for f in self.files)

    @property
    def lines_hit(self) -> int:
        return sum(f.lines_hit for f in self.files)

    @property
    def branches_found(self) -> int:
        return sum(f.branches_found for f in self.files)

    @property
    def branches_hit(self) -> int:
        return sum(f.branches_hit for f in self.files)

    @property
    def functions_found(self) -> int:
        return sum(f.functions_found for f in self.files)

    @property
    def functions_hit(self) -> int:
        return sum(f.functions_hit for f in self.files)

    @property
    def percentage(self) -> Optional[float]:
        """Aggregate line coverage, or None when nothing is instrumented."""
        return _pct(self.lines_hit, self.lines_found)

    @property
    def branch_percentage(self) -> Optional[float]:
        return _pct(self.branches_hit, self.branches_found)


def summarize(model: CoverageModel, warnings: Sequence[str] = ()) -> CoverageSummary:
    files = tuple(
        FileSummary(
            filename=name,
            lines_found=fc.lines_found,
            lines_hit=fc.lines_hit,
            branches_found=fc.branches_found,
            branches_hit=fc.branches_hit,
            functions_found=fc.functions_found,
            functions_hit=fc.functions_hit,
        )
        for name, fc in sorted(model.files.items())
    )
    return CoverageSummary(files=files, warnings=tuple(warnings))


def format_number(value: Optional[float], digits: int = 2) -> str:
    """Round for display and drop trailing zeros: 100, 50, 83.33."""
    if value is None:
        return "none"
    text = f"{value:.{digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _display_pct(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.1f}%"


# LCOV

def render_lcov(model: CoverageModel, test_name: str = "") -> str:
    out = []
    for filename, fc in sorted(model.files.items()):
        out.append(f"TN:{test_name}")
        out.append(f"SF:{filename}")
        for name, (line_no, _) in sorted(fc.functions.items(), key=lambda kv: (kv[1][0], kv[0])):
            out.append(f"FN:{line_no},{name}")
        for name, (_, hits) in sorted(fc.functions.items(), key=lambda kv: (kv[1][0], kv[0])):
            out.append(f"FNDA:{hits},{name}")
        out.append(f"FNF:{fc.functions_found}")
        out.append(f"FNH:{fc.functions_hit}")
        for (line_no, block, branch), taken in sorted(fc.branches.items()):
            out.append(f"BRDA:{line_no},{block},{branch},{taken}")
        out.append(f"BRF:{fc.branches_found}")
        out.append(f"BRH:{fc.branches_hit}")
        for line_no, hits in sorted(fc.lines.items()):
            out.append(f"DA:{line_no},{hits}")
        out.append(f"LF:{fc.lines_found}")
        out.append(f"LH:{fc.lines_hit}")
        out.append("end_of_record")
    return "\n".join(out) + ("\n" if out else "")


def write_lcov(model: CoverageModel, output_path: Path):
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_lcov(model))


# JSON

def _summary_dict(s) -> dict:
    return {
        "lines_found": s.lines_found,
        "lines_hit": s.lines_hit,
        "percentage": s.percentage,
        "branches_found": s.branches_found,
        "branches_hit": s.branches_hit,
        "functions_found": s.functions_found,
        "functions_hit": s.functions_hit,
    }


def to_json_dict(model: CoverageModel, summary: CoverageSummary) -> dict:
    per_file = {f.filename: f for f in summary.files}
    files = {}
    for filename, fc in sorted(model.files.items()):
        entry = {
            "lines": {str(n): hits for n, hits in sorted(fc.lines.items())},
            "branches": [[*key, taken] for key, taken in sorted(fc.branches.items())],
            "functions": {name: [line_no, hits] for name, (line_no, hits) in sorted(fc.functions.items())},
        }
        if filename in per_file:
            entry["summary"] = _summary_dict(per_file[filename])
        files[filename] = entry
    return {
        "version": JSON_SCHEMA_VERSION,
        "timestamp": summary.timestamp,
        "summary": _summary_dict(summary),
        "files": files,
        "warnings": list(summary.warnings),
    }


def write_json(model: CoverageModel, summary: CoverageSummary, output_path: Path):
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(to_json_dict(model, summary), f, indent=2)
        f.write("\n")


# Cobertura

def _rate(value: Optional[float]) -> str:
    return f"{(value or 0.0) / 100:.4f}"


def write_cobertura(model: CoverageModel, summary: CoverageSummary, output_path: Path, source_root: Path):
    """Generate Cobertura XML format coverage report."""
    coverage = ET.Element("coverage")
    coverage.set("version", "1.0")
    coverage.set("timestamp", str(int(datetime.now().timestamp() * 1000)))
    coverage.set("lines-valid", str(summary.lines_found))
    coverage.set("lines-covered", str(summary.lines_hit))
    coverage.set("line-rate", _rate(summary.percentage))
    coverage.set("branches-valid", str(summary.branches_found))
    coverage.set("branches-covered", str(summary.branches_hit))
    coverage.set("branch-rate", _rate(summary.branch_percentage))
    coverage.set("complexity", "0")

    sources = ET.SubElement(coverage, "sources")
    source = ET.SubElement(sources, "source")
    source.text = str(source_root.resolve())

    packages = ET.SubElement(coverage, "packages")
    by_package = {}
    for f in summary.files:
        rel_path = relative_name(f.filename, source_root)
        package = str(Path(rel_path).parent).replace("/", ".")
        by_package.setdefault(package, []).append((rel_path, f))

    for package, members in sorted(by_package.items()):
        found = sum(f.lines_found for _, f in members)
        hit = sum(f.lines_hit for _, f in members)
        b_found = sum(f.branches_found for _, f in members)
        b_hit = sum(f.branches_hit for _, f in members)
        pkg = ET.SubElement(packages, "package")
        pkg.set("name", package)
        pkg.set("line-rate", _rate(_pct(hit, found)))
        pkg.set("branch-rate", _rate(_pct(b_hit, b_found)))
        pkg.set("complexity", "0")
        classes = ET.SubElement(pkg, "classes")

        for rel_path, f in members:
            fc = model.files[f.filename]
            cls = ET.SubElement(classes, "class")
            cls.set("name", Path(rel_path).name)
            cls.set("filename", rel_path)
            cls.set("line-rate", _rate(f.percentage))
            cls.set("branch-rate", _rate(f.branch_percentage))
            cls.set("complexity", "0")
            ET.SubElement(cls, "methods")
            lines_elem = ET.SubElement(cls, "lines")

            branches_by_line = {}
            for (line_no, _, _), taken in fc.branches.items():
                branches_by_line.setdefault(line_no, []).append(taken)

            for line_no, hits in sorted(fc.lines.items()):
                line_elem = ET.SubElement(lines_elem, "line")
                line_elem.set("number", str(line_no))
                line_elem.set("hits", str(hits))
                branches = branches_by_line.get(line_no)
                if branches:
                    total = len(branches)
                    taken = sum(1 for b in branches if b > 0)
                    line_elem.set("branch", "true")
                    line_elem.set("condition-coverage", f"{taken / total * 100:.0f}% ({taken}/{total})")
                else:
                    line_elem.set("branch", "false")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    tree = ET.ElementTree(coverage)
    ET.indent(tree, space="  ")
    tree.write(output_path, encoding="utf-8", xml_declaration=True)


# HTML

STYLE = """
body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
       background: #1a1a2e; color: #eee; margin: 0; padding: 20px; }
a { color: #64b5f6; }
table { border-collapse: collapse; width: 100%; }
th, td { padding: 4px 10px; text-align: left; border-bottom: 1px solid #333; }
.big-stat { font-size: 3em; font-weight: bold; }
.cov-high { color: #4caf50; }
.cov-med { color: #ff9800; }
.cov-low { color: #f44336; }
.warnings { background: #3e2723; padding: 10px 20px; border-radius: 8px; }
tr.line-hit { background: rgba(76, 175, 80, 0.15); }
tr.line-miss { background: rgba(244, 67, 54, 0.25); }
td.line-no, td.line-count { color: #888; text-align: right; width: 1%; white-space: nowrap; }
pre { margin: 0; }
.branch-partial { color: #ff9800; }
.branch-full { color: #4caf50; }
"""


def coverage_class(pct: Optional[float]) -> str:
    """Return CSS class based on coverage percentage."""
    if pct is None:
        return "cov-low"
    if pct >= 80:
        return "cov-high"
    elif pct >= 50:
        return "cov-med"
    return "cov-low"


def load_source_file(path: Path) -> list:
    """Load source file lines; a missing source renders as an empty page."""
    try:
        with open(path, errors="replace") as f:
            return f.readlines()
    except OSError:
        return []


def _page(title: str, body: str) -> str:
    return f'''<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>{html.escape(title)}</title>
<style>{STYLE}</style>
</head>
<body>
{body}
</body>
</html>
'''


def page_name(rel_path: str, taken: set) -> str:
    """Flatten a source path into a page name not yet in taken, and claim it."""
    stem = rel_path.strip("/").replace("/", "_").replace(".", "_")
    name = stem + ".html"
    n = 2
    while name in taken:
        name = f"{stem}_{n}.html"
        n += 1
    taken.add(name)
    return name


def generate_file_html(fc: FileCoverage, f: FileSummary, output_dir: Path, source_root: Path,
                       used: Optional[set] = None) -> str:
    """Generate HTML page for a single file; returns the page name."""
    rel_path = relative_name(fc.filename, source_root)
    safe_name = page_name(rel_path, {"index.html"} if used is None else used)

    branches_by_line = {}
    for (line_no, _, _), taken in fc.branches.items():
        branches_by_line.setdefault(line_no, []).append(taken)

    rows = []
    source_lines = load_source_file(resolve_source(fc.filename, source_root))
    for i, source_line in enumerate(source_lines, 1):
        hits = fc.lines.get(i)
        if hits is None:
            line_class, count_display = "line-none", ""
        elif hits == 0:
            line_class, count_display = "line-miss", "0"
        else:
            line_class, count_display = "line-hit", str(hits)

        branch_display = ""
        branches = branches_by_line.get(i)
        if branches:
            taken = sum(1 for b in branches if b > 0)
            css = "branch-full" if taken == len(branches) else "branch-partial"
            branch_display = f'<span class="{css}">[{taken}/{len(branches)}]</span>'

        rows.append(
            f'<tr class="{line_class}" id="L{i}">'
            f'<td class="line-no"><a href="#L{i}">{i}</a></td>'
            f'<td class="line-count">{count_display}</td>'
            f'<td>{branch_display}</td>'
            f'<td><pre>{html.escape(source_line.rstrip())}</pre></td></tr>'
        )

    pct = f.percentage
    body = f'''<p><a href="index.html">&larr; index</a></p>
<h1>{html.escape(rel_path)}</h1>
<div class="big-stat {coverage_class(pct)}">{_display_pct(pct)}</div>
<p>{f.lines_hit} / {f.lines_found} lines, {f.branches_hit} / {f.branches_found} branches</p>
<table>
{chr(10).join(rows) if rows else '<tr><td>source not available</td></tr>'}
</table>'''
    (output_dir / safe_name).write_text(_page(f"Coverage: {rel_path}", body))
    return safe_name


def write_html(model: CoverageModel, summary: CoverageSummary, output_dir: Path, source_root: Path,
               title: str = "Coverage Report"):
    """Generate HTML coverage report with file browsing."""
    output_dir.mkdir(parents=True, exist_ok=True)

    rows = []
    taken = {"index.html"}
    for f in summary.files:
        link = generate_file_html(model.files[f.filename], f, output_dir, source_root, taken)
        rel_path = relative_name(f.filename, source_root)
        pct = f.percentage
        branch_pct = f.branch_percentage
        rows.append(f'''<tr>
<td><a href="{link}">{html.escape(rel_path)}</a></td>
<td class="{coverage_class(pct)}">{_display_pct(pct)}</td>
<td>{f.lines_hit}/{f.lines_found}</td>
<td class="{coverage_class(branch_pct)}">{_display_pct(branch_pct)}</td>
<td>{f.branches_hit}/{f.branches_found}</td>
</tr>''')

    warnings = ""
    if summary.warnings:
        items = "".join(f"<li>{html.escape(w)}</li>" for w in summary.warnings)
        warnings = f'<div class="warnings"><h2>Skipped fragments</h2><ul>{items}</ul></div>'

    pct = summary.percentage
    body = f'''<h1>{html.escape(title)}</h1>
<div class="big-stat {coverage_class(pct)}">{_display_pct(pct)}</div>
<p>{summary.lines_hit:,} / {summary.lines_found:,} lines,
{summary.branches_hit:,} / {summary.branches_found:,} branches,
{summary.functions_hit:,} / {summary.functions_found:,} functions</p>
{warnings}
<table>
<thead><tr><th>File</th><th>Lines</th><th>L Hit/Total</th><th>Branches</th><th>B Hit/Total</th></tr></thead>
<tbody>
{chr(10).join(rows)}
</tbody>
</table>
<p>Generated: {summary.timestamp}</p>'''
    (output_dir / "index.html").write_text(_page(title, body))


# Text

def format_text(summary: CoverageSummary, source_root: Path) -> str:
    out = []
    out.append("=" * 80)
    out.append("COVERAGE REPORT")
    out.append("=" * 80)
    for f in summary.files:
        rel_path = relative_name(f.filename, source_root)
        out.append(
            f"  {rel_path:50s} {_display_pct(f.percentage):>7s} line "
            f"({f.lines_hit}/{f.lines_found}), {_display_pct(f.branch_percentage):>7s} branch"
        )
    out.append("-" * 80)
    out.append(
        f"  {'TOTAL':50s} {_display_pct(summary.percentage):>7s} line "
        f"({summary.lines_hit}/{summary.lines_found}), "
        f"{_display_pct(summary.branch_percentage):>7s} branch"
    )
    if summary.warnings:
        out.append("")
        out.append("SKIPPED FRAGMENTS:")
        for w in summary.warnings:
            out.append(f"  {w}")
    out.append("=" * 80)
    return "\n".join(out)


def write_report(fmt: str, model: CoverageModel, summary: CoverageSummary,
                 output: Optional[Path], source_root: Path) -> Optional[Path]:
    """Render one report format. Returns the written path, None for text."""
    if fmt not in FORMATS:
        raise ValueError(f"unknown report format {fmt!r}")
    if fmt == "text":
        print(format_text(summary, source_root))
        return None
    path = output if output is not None else Path(DEFAULT_OUTPUTS[fmt])
    if fmt == "lcov":
        write_lcov(model, path)
    elif fmt == "json":
        write_json(model, summary, path)
    elif fmt == "cobertura":
        write_cobertura(model, summary, path, source_root)
    else:
        write_html(model, summary, path, source_root)
        path = path / "index.html"
    return path
