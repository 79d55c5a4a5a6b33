"""Deterministic demo content: one organization, one project, one populated matrix."""

from __future__ import annotations

import logging
import random
from typing import Dict

from impactmatrix import store
from impactmatrix.grid import CELL_HEIGHT, CELL_WIDTH, score_to_pixel

logger = logging.getLogger(__name__)

RANDOM_SEED = 20260216
SAMPLE_ORGANIZATION = "Sample Organization"

CATEGORIES = [
    ("Growth", "Acquisition and activation work", "#22c55e"),
    ("Platform", "Infrastructure and reliability", "#3b82f6"),
    ("Support", "Customer support tooling", "#eab308"),
]

# (title, effort, business_value, weight, status, category index)
IDEAS = [
    ("Self-serve onboarding checklist", 2, 9, 8, "IN_PROGRESS", 0),
    ("Referral credits", 3, 7, 6, "DRAFT", 0),
    ("Usage-based billing", 9, 9, 9, "DRAFT", 0),
    ("Multi-region failover", 8, 7, 7, "IN_PROGRESS", 1),
    ("Dark mode", 2, 3, 3, "COMPLETED", None),
    ("Rewrite legacy report exporter", 9, 2, 4, "ARCHIVED", 1),
    ("Canned replies for support", 1, 4, 5, "COMPLETED", 2),
    ("Ticket auto-triage", 6, 4, 5, "DRAFT", 2),
]


def load_sample_data(conn, reset: bool = False) -> Dict[str, int]:
    """Insert the sample tree. Existing sample content is kept unless ``reset`` is set."""
    rng = random.Random(RANDOM_SEED)
    existing = conn.execute("SELECT id FROM organizations WHERE name = ?", (SAMPLE_ORGANIZATION,)).fetchall()
    if existing and not reset:
        logger.info("Sample data already present; skipping")
        return {"organizations": 0, "projects": 0, "matrices": 0, "categories": 0, "ideas": 0}
    for row in existing:
        store.delete_organization(conn, row["id"])

    organization = store.create_organization(conn, SAMPLE_ORGANIZATION, "Demo workspace")
    project = store.create_project(conn, "Q3 Roadmap", organization["id"], "Candidate work for next quarter")
    matrix = store.create_matrix(conn, "Product Bets", project["id"], "Effort vs. value for roadmap candidates")
    categories = [
        store.create_category(conn, name, matrix["id"], description=description, color=color)
        for name, description, color in CATEGORIES
    ]
    ideas = []
    for title, effort, value, weight, status, category_index in IDEAS:
        ideas.append(
            store.create_idea(
                conn,
                title,
                matrix["id"],
                effort=effort,
                business_value=value,
                weight=weight,
                status=status,
                category_id=categories[category_index]["id"] if category_index is not None else None,
            )
        )

    # Nudge two ideas off their cells so the board shows drift.
    for idea in rng.sample(ideas, 2):
        x, y = score_to_pixel(idea["effort"], idea["business_value"])
        store.update_custom_position(
            conn,
            idea["id"],
            x + rng.choice([-1, 1]) * CELL_WIDTH,
            y + rng.choice([-1, 1]) * CELL_HEIGHT / 2,
        )

    counts = {
        "organizations": 1,
        "projects": 1,
        "matrices": 1,
        "categories": len(categories),
        "ideas": len(ideas),
    }
    logger.info("Loaded sample data: %s", counts)
    return counts
