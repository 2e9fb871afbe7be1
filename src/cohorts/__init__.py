"""Cohort data handling for comorbidity-index variable selection.

Data Loading:
- Patient-level table (parquet, feather or CSV)
- Global age standardization, computed before any split
- Code -> label mapping for reports

Partitioning:
- Cohort-stratified, seeded train/test split

Predictor Families:
- Elixhauser (``elix_``), Charlson (``cd_``) and HCC (``hcc_``) indicators
- Shared numeric design-matrix encoding
"""

from src.cohorts.data import (
    load_patients,
    add_standardized_age,
    load_term_labels,
)
from src.cohorts.partition import (
    partition,
)
from src.cohorts.families import (
    FamilySpec,
    select_family,
    cohort_frames,
    build_design_matrix,
)

__all__ = [
    # Data loading
    "load_patients",
    "add_standardized_age",
    "load_term_labels",
    # Partitioning
    "partition",
    # Predictor families
    "FamilySpec",
    "select_family",
    "cohort_frames",
    "build_design_matrix",
]
