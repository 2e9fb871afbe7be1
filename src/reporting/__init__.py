"""Normalization and export of selection results.

Normalization:
- Long (cohort, term, metric, value) records per SelectionResult
- Wide per-cohort comparison tables with cleaned term labels
- Lasso terms never selected in any cohort

Export:
- CSV comparison tables (4 decimals for regression, 3 for importance)
- Markdown display tables with human-readable labels
- Run manifest (JSON) listing failed units and why
- Cached random-forest bundles (joblib)
"""

from src.reporting.normalize import (
    clean_term_label,
    to_long,
    normalize,
    wide_to_triples,
    never_selected_terms,
)
from src.reporting.export import (
    write_comparison_table,
    read_comparison_table,
    render_markdown_table,
    write_manifest,
    model_summary,
    save_forest_bundle,
    load_forest_bundle,
    results_from_forest_bundle,
    export_strategy_family,
    export_run,
)

__all__ = [
    # Normalization
    "clean_term_label",
    "to_long",
    "normalize",
    "wide_to_triples",
    "never_selected_terms",
    # Export
    "write_comparison_table",
    "read_comparison_table",
    "render_markdown_table",
    "write_manifest",
    "model_summary",
    "save_forest_bundle",
    "load_forest_bundle",
    "results_from_forest_bundle",
    "export_strategy_family",
    "export_run",
]
