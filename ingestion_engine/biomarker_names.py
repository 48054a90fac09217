"""
SupplementScribe Canonical Biomarker Names
==========================================
Maps the many ways labs print a test name onto one canonical code, so
"Vitamin D, 25-OH" and "25-Hydroxyvitamin D" land on the same
user_biomarkers row.

Names are compared in compact form: lowercase, letters and digits only, with
a leading or trailing "serum"/"plasma" dropped. Unknown names have no
canonical code and are stored as printed.
"""

import re
from typing import Dict, Optional, Tuple

CANONICAL_BIOMARKERS: Dict[str, Tuple[str, ...]] = {
    # Hematology
    "hemoglobin": ("Hemoglobin", "Hgb", "Hb"),
    "hematocrit": ("Hematocrit", "Hct"),
    "rbc_count": ("RBC count", "Red Blood Cell Count", "RBC"),
    "wbc_count": ("WBC count", "White Blood Cell Count", "WBC"),
    "platelet_count": ("Platelet count", "Platelets", "PLT"),
    "mcv": ("MCV", "Mean Corpuscular Volume"),
    "hba1c": ("HbA1c", "Hemoglobin A1c", "A1C", "Glycated Hemoglobin", "Glycohemoglobin"),
    # Metabolic
    "glucose_fasting": ("Glucose (fasting)", "Fasting Glucose", "Glucose"),
    "insulin": ("Insulin", "Fasting Insulin"),
    "creatinine": ("Creatinine",),
    "egfr": ("eGFR", "Estimated Glomerular Filtration Rate"),
    "bun": ("BUN", "Blood Urea Nitrogen", "Urea Nitrogen (BUN)"),
    "alt": ("ALT", "ALT (SGPT)", "SGPT", "Alanine Aminotransferase"),
    "ast": ("AST", "AST (SGOT)", "SGOT", "Aspartate Aminotransferase"),
    "ggt": ("GGT", "Gamma-Glutamyl Transferase"),
    "alkaline_phosphatase": ("Alkaline Phosphatase", "ALP"),
    "bilirubin_total": ("Total Bilirubin", "Bilirubin, Total", "Bilirubin"),
    "albumin": ("Albumin",),
    "magnesium": ("Magnesium",),
    "magnesium_rbc": ("Magnesium, RBC", "RBC Magnesium", "Magnesium Red Blood Cell"),
    # Lipids and cardiovascular
    "cholesterol_total": ("Total Cholesterol", "Cholesterol, Total", "Cholesterol"),
    "ldl_c": ("LDL-C", "LDL Cholesterol", "LDL"),
    "hdl_c": ("HDL-C", "HDL Cholesterol", "HDL"),
    "triglycerides": ("Triglycerides", "TG"),
    "apolipoprotein_b": ("Apolipoprotein B", "ApoB"),
    "lpa": ("Lipoprotein(a)", "Lp(a)"),
    "hs_crp": ("hs-CRP", "hsCRP", "High-sensitivity C-Reactive Protein", "C-Reactive Protein",
               "CRP", "Cardiac CRP", "CRP, High Sensitivity"),
    "homocysteine": ("Homocysteine", "Hcy"),
    "omega3_index": ("Omega-3 Index", "O3 Index"),
    # Hormones
    "tsh": ("TSH", "Thyroid-Stimulating Hormone", "TSH (Thyroid Screen)", "TSH 3rd Generation"),
    "free_t4": ("Free T4", "FT4", "T4, Free"),
    "free_t3": ("Free T3", "FT3"),
    "cortisol": ("Cortisol", "Cortisol (AM)"),
    "dhea_s": ("DHEA-S", "DHEA-Sulfate"),
    "estradiol": ("Estradiol", "Estradiol (E2)", "E2"),
    "testosterone_total": ("Testosterone (total)", "Total Testosterone", "Testosterone, Total", "Testosterone"),
    "testosterone_free": ("Testosterone (free)", "Free Testosterone", "Testosterone, Free"),
    "shbg": ("SHBG", "Sex Hormone Binding Globulin"),
    # Vitamins and minerals
    "vitamin_d_25oh": ("Vitamin D", "Vitamin D, 25-OH", "25-OH Vitamin D", "25-Hydroxyvitamin D",
                       "Vitamin D, 25-Hydroxy", "25(OH)D", "Vit D", "Calcidiol"),
    "vitamin_b12": ("Vitamin B12", "B12", "Cobalamin", "Cyanocobalamin"),
    "folate": ("Folate", "Folic Acid", "Vitamin B9", "Folate (RBC)"),
    "serum_iron": ("Iron", "Fe"),
    "ferritin": ("Ferritin",),
    "tibc": ("TIBC", "Total Iron Binding Capacity", "Iron Binding Capacity"),
    "transferrin_sat": ("Transferrin Saturation", "Transferrin Sat", "Iron Saturation", "% TSAT", "TSAT"),
    "zinc": ("Zinc", "Zn"),
    "copper": ("Copper",),
    "selenium": ("Selenium",),
    "methylmalonic_acid": ("Methylmalonic Acid", "MMA"),
}

_SPECIMEN_WORDS = ("serum", "plasma")


def compact_name(name: str) -> str:
    """'Vitamin D, 25-OH' -> 'vitamind25oh'; 'Serum Iron' -> 'iron'."""
    compact = re.sub(r"[^a-z0-9]", "", name.lower())
    for word in _SPECIMEN_WORDS:
        if compact.startswith(word) and len(compact) > len(word):
            compact = compact[len(word):]
        if compact.endswith(word) and len(compact) > len(word):
            compact = compact[:-len(word)]
    return compact


def _build_index() -> Dict[str, str]:
    index: Dict[str, str] = {}
    for canonical, aliases in CANONICAL_BIOMARKERS.items():
        index.setdefault(compact_name(canonical), canonical)
        for alias in aliases:
            key = compact_name(alias)
            if key in index and index[key] != canonical:
                raise ValueError(f"Alias {alias!r} maps to both {index[key]} and {canonical}")
            index[key] = canonical
    return index


_ALIAS_INDEX = _build_index()


def canonical_marker_name(name: Optional[str]) -> Optional[str]:
    """Canonical code for a printed test name, or None when it is not known."""
    if not name:
        return None
    return _ALIAS_INDEX.get(compact_name(name))
