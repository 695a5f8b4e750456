"""Centralised project paths & defaults."""

from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]  # repo root
ARTIFACT_DIR = PROJECT_ROOT / "artifacts"  # saved state dicts
MLFLOW_EXPERIMENT = "tower_recs_experiments"
