#!/usr/bin/env python3
"""
Generate DEMO raw data for development and testing ONLY.

Writes a synthetic looking-while-listening dataset in the coded-looking
grid layout (one row per trial, one column per 33 ms frame), a
participant file and a dataset configuration, so that the import can be
exercised end to end:

    python scripts/generate_synthetic_data.py
    peekbank icoder data/demo_icoder/demo_icoder.json \\
        data/demo_icoder/raw_data/*.txt \\
        --participants data/demo_icoder/raw_data/participants.csv \\
        --participant-id-column child_id

The looking codes are random; they do not represent any real children.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pandas as pd
from datetime import datetime
import json

from config.settings import get_config

DATASET_NAME = "demo_icoder"
FRAME_MS = 1000 / 30

# (target, distractor) pairs for the two presentation orders
ORDERS = {
    "A": [("dog", "cat"), ("ball", "shoe"), ("cup", "book"), ("car", "baby")],
    "B": [("cat", "dog"), ("shoe", "ball"), ("book", "cup"), ("baby", "car")],
}
CARRIERS = ["look", "where", "can", "do"]

COLUMN_MAP = {
    "Sub Num": "lab_subject_id",
    "Months": "lab_age",
    "Order": "administration_order",
    "Tr Num": "trial_order",
    "Target Side": "target_side",
    "Target Image": "target_label",
    "Distractor Image": "distractor_label",
    "Carrier": "phrase_code",
    "Prescreen Notes": "exclusion_reason",
}


def generate_demo_grid(
    n_subjects: int = 12,
    n_pre_frames: int = 18,
    n_post_frames: int = 60,
    seed: int = 12345
) -> pd.DataFrame:
    """
    Generate a coded-looking grid for `n_subjects` fake children.

    Parameters
    ----------
    n_subjects : int
        Number of simulated children
    n_pre_frames : int
        Frames coded before target-word onset
    n_post_frames : int
        Frames coded from target-word onset on
    seed : int
        Random seed for reproducibility

    Returns
    -------
    pd.DataFrame
        Raw grid with the coder's column headers
    """
    print(f"Generating DEMO grid for {n_subjects} fake subjects...")

    rng = np.random.default_rng(seed)
    pre_columns = [f"-{int(round((n_pre_frames - i) * FRAME_MS))}" for i in range(n_pre_frames)]
    post_columns = [f"F{int(round(i * FRAME_MS))}" for i in range(n_post_frames)]

    records = []
    for subject in range(n_subjects):
        order = "A" if subject % 2 == 0 else "B"
        months = int(rng.integers(18, 31))
        # Looking at the target becomes more likely after onset
        p_target = rng.uniform(0.55, 0.8)

        for trial, (target, distractor) in enumerate(ORDERS[order], start=1):
            row = {
                "Sub Num": str(1000 + subject),
                "Months": str(months),
                "Order": order,
                "Tr Num": str(trial),
                "Target Side": str(rng.choice(["L", "R"])),
                "Target Image": target,
                "Distractor Image": distractor,
                "Carrier": CARRIERS[(trial - 1) % len(CARRIERS)],
                "Prescreen Notes": "fussy" if rng.random() < 0.05 else None,
            }
            for col in pre_columns:
                row[col] = str(rng.choice(["0", "1", ".", "-"], p=[0.45, 0.45, 0.05, 0.05]))
            for col in post_columns:
                row[col] = str(rng.choice(
                    ["1", "0", "0.5", "."],
                    p=[p_target, 0.9 - p_target, 0.05, 0.05],
                ))
            records.append(row)

    df = pd.DataFrame(records)
    print(f"Generated {len(df)} DEMO trials")
    return df


def generate_demo_participants(grid: pd.DataFrame, seed: int = 12345) -> pd.DataFrame:
    """One demographics row per subject in `grid`."""
    rng = np.random.default_rng(seed + 1)
    subjects = grid["Sub Num"].drop_duplicates().tolist()
    return pd.DataFrame({
        "child_id": subjects,
        "sex": rng.choice(["M", "F"], size=len(subjects)),
        "native_language": "eng",
    })


def generate_demo_data():
    """Generate demo raw files and a matching dataset configuration."""
    paths = get_config().paths
    raw_dir = paths.raw_path(DATASET_NAME)
    raw_dir.mkdir(parents=True, exist_ok=True)

    print("\n" + "=" * 60)
    print("GENERATING DEMO DATA FOR TESTING ONLY")
    print("=" * 60 + "\n")

    grid = generate_demo_grid()
    grid_path = raw_dir / "DEMO_icoder_grid.txt"
    grid.to_csv(grid_path, sep="\t", index=False)
    print(f"Saved: {grid_path}")

    participants_path = raw_dir / "participants.csv"
    generate_demo_participants(grid).to_csv(participants_path, index=False)
    print(f"Saved: {participants_path}")

    dataset_config = {
        "dataset_name": DATASET_NAME,
        "cite": f"Synthetic demo data generated {datetime.now().date().isoformat()}",
        "shortcite": "Demo",
        "tracker": "video_camera",
        "sample_rate": 30,
        "coding_method": "manual gaze coding",
        "side_perspective": "coder",
        "point_of_disambiguation": 0,
        "rezero": False,
        "column_map": COLUMN_MAP,
    }
    config_path = raw_dir.parent / f"{DATASET_NAME}.json"
    with open(config_path, "w") as f:
        json.dump(dataset_config, f, indent=2)
    print(f"Saved: {config_path}")

    print("\n" + "=" * 60)
    print("DEMO DATA GENERATED")
    print("=" * 60)


if __name__ == "__main__":
    generate_demo_data()
