"""Excel export of a single impact matrix.

The workbook is built in memory with openpyxl and returned as bytes. Sheets,
in order: Ideas, Categories, Metadata and (optionally) Filter Presets. Every
sheet freezes its header row.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Iterable, List, Mapping, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from impactmatrix import config, store
from impactmatrix.filters import effective_scores, idea_has_drift
from impactmatrix.grid import classify_quadrant, quadrant_label

logger = logging.getLogger(__name__)

MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

IDEAS_HEADER_COLOR = "3b82f6"
CATEGORIES_HEADER_COLOR = "22c55e"
METADATA_HEADER_COLOR = "3b82f6"
PRESETS_HEADER_COLOR = "eab308"
DERIVED_FILL_COLOR = "FFE5E7EB"
HEADER_ROW_HEIGHT = 20

IDEA_COLUMNS = [
    ("ID", 25),
    ("Title *", 30),
    ("Description", 40),
    ("Effort *", 10),
    ("Business Value *", 15),
    ("Weight *", 10),
    ("Status *", 15),
    ("Category", 20),
    ("Position X", 12),
    ("Position Y", 12),
    ("Quadrant", 20),
    ("Has Drift", 10),
]
# Quadrant and Has Drift are computed on export, not imported back.
DERIVED_IDEA_COLUMNS = (11, 12)
STATUS_COLUMN = 7

CATEGORY_COLUMNS = [("ID", 25), ("Name *", 20), ("Description", 40), ("Color *", 12)]
METADATA_COLUMNS = [("Key", 25), ("Value", 50)]
PRESET_COLUMNS = [("ID", 25), ("Name *", 30), ("Filters JSON", 80)]


@dataclass
class ExportResult:
    document: bytes
    filename: str
    mime_type: str = MIME_TYPE


def solid_fill(argb: str) -> PatternFill:
    return PatternFill(start_color=argb, end_color=argb, fill_type="solid")


def add_sheet(workbook: Workbook, title: str, columns: List[tuple], header_color: str):
    sheet = workbook.create_sheet(title=title)
    sheet.append([header for header, _ in columns])
    for index, (_, width) in enumerate(columns, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = width
    style_header_row(sheet, header_color)
    sheet.freeze_panes = "A2"
    return sheet


def style_header_row(sheet, color: str) -> None:
    """Solid fill, bold white text, middle/left alignment, fixed height."""
    fill = solid_fill(f"FF{color.lstrip('#')}")
    for cell in sheet[1]:
        cell.fill = fill
        cell.font = Font(bold=True, color="FFFFFFFF")
        cell.alignment = Alignment(vertical="center", horizontal="left")
    sheet.row_dimensions[1].height = HEADER_ROW_HEIGHT


def add_ideas_sheet(workbook: Workbook, ideas: Iterable[Mapping[str, Any]], tolerance: float) -> None:
    sheet = add_sheet(workbook, "Ideas", IDEA_COLUMNS, IDEAS_HEADER_COLOR)
    derived_fill = solid_fill(DERIVED_FILL_COLOR)
    row_count = 0
    for idea in ideas:
        category = idea.get("category") or {}
        quadrant = classify_quadrant(*effective_scores(idea))
        sheet.append(
            [
                idea["id"],
                idea["title"],
                idea.get("description") or "",
                idea["effort"],
                idea["business_value"],
                idea["weight"],
                idea["status"],
                category.get("name") or "",
                idea.get("position_x"),
                idea.get("position_y"),
                quadrant_label(quadrant),
                idea_has_drift(idea, tolerance),
            ]
        )
        row_count += 1
        for column in DERIVED_IDEA_COLUMNS:
            sheet.cell(row=sheet.max_row, column=column).fill = derived_fill

    if row_count:
        validation = DataValidation(
            type="list",
            formula1='"{}"'.format(",".join(config.IDEA_STATUSES)),
            allow_blank=False,
        )
        sheet.add_data_validation(validation)
        status_letter = get_column_letter(STATUS_COLUMN)
        validation.add(f"{status_letter}2:{status_letter}{row_count + 1}")


def add_categories_sheet(workbook: Workbook, categories: Iterable[Mapping[str, Any]]) -> None:
    sheet = add_sheet(workbook, "Categories", CATEGORY_COLUMNS, CATEGORIES_HEADER_COLOR)
    for category in categories:
        sheet.append([category["id"], category["name"], category.get("description") or "", category["color"]])
        color_cell = sheet.cell(row=sheet.max_row, column=4)
        hex_value = str(category["color"]).lstrip("#")
        if re.fullmatch(r"[0-9A-Fa-f]{6}", hex_value):
            color_cell.fill = solid_fill(f"FF{hex_value.upper()}")
            color_cell.font = Font(bold=True, color="FFFFFFFF")
        else:
            logger.warning("Category %s has unparseable color %r", category["id"], category["color"])


def add_metadata_sheet(workbook: Workbook, matrix: Mapping[str, Any], exported_at: dt.datetime) -> None:
    sheet = add_sheet(workbook, "Metadata", METADATA_COLUMNS, METADATA_HEADER_COLOR)
    project = matrix["project"]
    rows = [
        ("Matrix ID", matrix["id"]),
        ("Matrix Name", matrix["name"]),
        ("Matrix Description", matrix.get("description") or "-"),
        ("Project", project["name"]),
        ("Organization", project["organization"]["name"]),
        ("Export Date", store.iso(exported_at)),
        ("Total Ideas", str(len(matrix["ideas"]))),
        ("Total Categories", str(len(matrix["categories"]))),
        ("Export Version", config.EXPORT_VERSION),
    ]
    for key, value in rows:
        sheet.append([key, value])
        sheet.cell(row=sheet.max_row, column=1).font = Font(bold=True)


def add_filter_presets_sheet(workbook: Workbook, presets: Iterable[Mapping[str, Any]]) -> None:
    sheet = add_sheet(workbook, "Filter Presets", PRESET_COLUMNS, PRESETS_HEADER_COLOR)
    for preset in presets:
        sheet.append([preset["id"], preset["name"], json.dumps(preset["filters"], sort_keys=True)])
        sheet.cell(row=sheet.max_row, column=3).font = Font(name="Courier New", size=10)


def build_matrix_workbook(
    matrix: Mapping[str, Any],
    presets: Optional[List[Dict[str, Any]]] = None,
    exported_at: Optional[dt.datetime] = None,
    tolerance: float = config.DRIFT_TOLERANCE_PX,
) -> Workbook:
    workbook = Workbook()
    workbook.remove(workbook.active)
    workbook.properties.creator = config.EXPORT_CREATOR
    add_ideas_sheet(workbook, matrix["ideas"], tolerance)
    add_categories_sheet(workbook, matrix["categories"])
    add_metadata_sheet(workbook, matrix, exported_at or store.utcnow())
    if presets:
        add_filter_presets_sheet(workbook, presets)
    return workbook


def export_filename(matrix_name: str, today: Optional[dt.date] = None) -> str:
    """``<slug>-YYYY-MM-DD.xlsx``; every non-alphanumeric becomes ``-``."""
    slug = re.sub(r"[^A-Za-z0-9]", "-", matrix_name).lower()
    day = today or store.utcnow().date()
    return f"{slug}-{day.isoformat()}.xlsx"


def workbook_bytes(workbook: Workbook) -> bytes:
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def export_matrix_to_excel(conn, matrix_id: str, include_filter_presets: bool = False) -> ExportResult:
    # Missing matrix raises NotFoundError here, before any workbook work.
    matrix = store.load_matrix_bundle(
        conn,
        matrix_id,
        idea_order="ASC",
        include_filter_presets=include_filter_presets,
    )
    exported_at = store.utcnow()
    workbook = build_matrix_workbook(
        matrix,
        presets=matrix.get("filter_presets") if include_filter_presets else None,
        exported_at=exported_at,
        tolerance=config.DRIFT_TOLERANCE_PX,
    )
    result = ExportResult(
        document=workbook_bytes(workbook),
        filename=export_filename(matrix["name"], exported_at.date()),
    )
    logger.info(
        "Exported impact matrix %s (%d ideas, %d categories, %d bytes)",
        matrix_id,
        len(matrix["ideas"]),
        len(matrix["categories"]),
        len(result.document),
    )
    return result
