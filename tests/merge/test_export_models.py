"""Tests for the teacher/admin export model builders."""

import sys
from pathlib import Path

# Add project root to path (tests/merge/ -> tests/ -> project root)
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from models.schemas import IndicatorState, ObservationMeta
from services.excel_engine import validate_sheet_name
from services.merge_engine import (
    ADMIN_LAYOUT,
    TEACHER_LAYOUT,
    build_admin_export_model,
    build_admin_sheet_name,
    build_teacher_export_model,
    build_teacher_sheet_name,
    clean_ocr_text,
)


META = ObservationMeta(
    teacherName="Lan",
    schoolName="GrapeSEED Hanoi",
    campus="Cau Giay",
    unit="12",
    lesson="3",
    supportType="LVA",
    date="2025-11-04",
    trainerName="Minh",
)


class TestSheetNames:

    def test_teacher_sheet_name_from_date(self):
        assert build_teacher_sheet_name("2025-11-04") == "11.2025"
        assert build_teacher_sheet_name("2025-03-01T08:00:00Z") == "03.2025"

    def test_teacher_sheet_name_fallback(self):
        assert build_teacher_sheet_name(None) == "Teacher Report"
        assert build_teacher_sheet_name("not a date") == "Teacher Report"

    def test_admin_sheet_name(self):
        assert build_admin_sheet_name("Lan", "2025-11-04", "Visit") == "Lan 11.2025 Visit"
        assert build_admin_sheet_name("Lan", None, "LVA") == "Lan Unknown LVA"

    def test_admin_sheet_name_is_valid_for_excel(self):
        name = build_admin_sheet_name("Nguyễn Thị: Lan/Anh", "2025-11-04", "Training")
        validate_sheet_name(name)
        assert name.startswith("Nguyễn Thị Lan")
        assert name.endswith(" 11.2025 Training")


class TestCleanOcrText:

    def test_removes_markers_and_blank_lines(self):
        text = "[OCR] Good pacing\n\n\n\n[ocr]Clear voice  "
        assert clean_ocr_text(text) == "Good pacing\n\nClear voice"

    def test_empty(self):
        assert clean_ocr_text(None) == ""
        assert clean_ocr_text("") == ""

    def test_drops_control_characters(self):
        assert clean_ocr_text("Good pacing\x0bclear voice\x1f") == "Good pacingclear voice"
        assert clean_ocr_text("tab\tand\nnewline") == "tab\tand\nnewline"


class TestTeacherExportModel:
    """Ratings and comment placement for the teacher sheet."""

    def test_every_layout_row_gets_a_rating(self):
        model = build_teacher_export_model(META, [])
        assert set(model.indicators) == set(TEACHER_LAYOUT.keys)
        assert all(v.rating == "Not applicable" for v in model.indicators.values())

    def test_comment_goes_to_strengths_or_growth(self):
        model = build_teacher_export_model(META, [
            IndicatorState(number="1.1", good=True, commentText="Tidy"),
            IndicatorState(number="1.2", growth=True, commentText="[OCR] Cables on floor"),
            IndicatorState(number="1.3", good=True, growth=True, commentText="Bright"),
        ])

        assert model.indicators["1.1"].rating == "Good"
        assert model.indicators["1.1"].strengths == "Tidy"
        assert model.indicators["1.1"].growth == ""

        assert model.indicators["1.2"].rating == "Need some work"
        assert model.indicators["1.2"].strengths == ""
        assert model.indicators["1.2"].growth == "Cables on floor"

        assert model.indicators["1.3"].rating == "Good"
        assert model.indicators["1.3"].strengths == "Bright"

    def test_labels_left_to_layout_defaults(self):
        model = build_teacher_export_model(META, [])
        assert model.indicators["1.1"].label is None
        assert model.indicators["1.1"].description is None

    def test_unknown_indicator_passes_through(self):
        model = build_teacher_export_model(META, [
            IndicatorState(number="9.9", good=True, commentText="Extra"),
        ])
        assert model.indicators["9.9"].strengths == "Extra"

    def test_header_block(self):
        model = build_teacher_export_model(META, [])
        header = model.header["header_block"]
        lines = header.split("\n")
        assert len(lines) == 6
        assert "Minh" in lines[0]
        assert "GrapeSEED Hanoi" in lines[1]
        assert "LVA" in lines[2]
        assert lines[-1] == "Date: 2025-11-04"


class TestAdminExportModel:
    """Vietnamese ratings and admin header slots."""

    def test_ratings(self):
        model = build_admin_export_model(META, [
            IndicatorState(number="1.1", good=True),
            IndicatorState(number="1.2", growth=True),
            IndicatorState(number="1.3", good=True, growth=True),
        ])
        assert model.indicators["1.1"].rating == "Tốt"
        assert model.indicators["1.2"].rating == "Cần cải thiện"
        assert model.indicators["1.3"].rating == "Rất tốt"
        assert model.indicators["3.1"].rating == "Không áp dụng"
        assert set(ADMIN_LAYOUT.keys) <= set(model.indicators)

    def test_comment_goes_to_notes(self):
        model = build_admin_export_model(META, [
            IndicatorState(number="1.2", growth=True, commentText="Cần sắp xếp lại"),
        ])
        assert model.indicators["1.2"].strengths == "Cần sắp xếp lại"
        assert model.indicators["1.2"].growth is None

    def test_header_fields(self):
        model = build_admin_export_model(META, [], trainer_summary="  Tiết học tốt  ")
        assert set(model.header) == {
            "header_left", "header_right", "teacher_label", "trainer_summary",
        }
        assert "Giáo viên: Lan" in model.header["header_left"]
        assert "Trainer: Minh" in model.header["header_right"]
        assert model.header["teacher_label"] == "GV: Lan"
        assert model.header["trainer_summary"] == "Tiết học tốt"

    def test_summary_omitted_when_blank(self):
        model = build_admin_export_model(META, [], trainer_summary="   ")
        assert "trainer_summary" not in model.header
