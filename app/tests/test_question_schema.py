"""
Unit tests for question options, answer validation and list-table columns.
"""
import pytest

from app.core.errors import ValidationError
from app.db.models import QuestionType
from app.services.question_schema import (
    LeafColumn,
    NestedColumn,
    add_row,
    delete_row,
    dump_columns,
    empty_row,
    format_answer,
    header_rows,
    is_answered,
    leaf_paths,
    max_depth,
    parse_columns,
    update_cell,
    validate_answer,
    validate_options,
)


COLUMNS = [
    {"name": "Substance", "type": "text"},
    {
        "name": "Concentration",
        "type": "text",
        "nested": True,
        "nestedColumns": [
            {"name": "Value", "type": "number"},
            {"name": "Unit", "type": "select", "options": ["%", "ppm"]},
        ],
    },
]


# ============= Columns =============

class TestColumns:
    def test_parse_builds_leaf_and_nested_columns(self):
        columns = parse_columns(COLUMNS)

        assert columns[0] == LeafColumn(name="Substance", type="text")
        assert isinstance(columns[1], NestedColumn)
        assert [c.name for c in columns[1].columns] == ["Value", "Unit"]
        assert columns[1].columns[1].options == ("%", "ppm")

    def test_dump_restores_wire_format(self):
        assert dump_columns(parse_columns(COLUMNS)) == COLUMNS

    def test_nested_column_without_children_is_rejected(self):
        with pytest.raises(ValidationError, match="nestedColumns"):
            parse_columns([{"name": "Concentration", "nested": True, "nestedColumns": []}])

    def test_select_column_requires_options(self):
        with pytest.raises(ValidationError, match="requires options"):
            parse_columns([{"name": "Unit", "type": "select"}])

    def test_duplicate_column_names_are_rejected(self):
        with pytest.raises(ValidationError, match="duplicate"):
            parse_columns([{"name": "A"}, {"name": "A"}])

    def test_unknown_column_type_is_rejected(self):
        with pytest.raises(ValidationError, match="unknown type"):
            parse_columns([{"name": "A", "type": "colour"}])

    def test_header_rows_span_leaf_descendants(self):
        rows = header_rows(parse_columns(COLUMNS))

        assert len(rows) == 2
        substance, concentration = rows[0]
        assert (substance.name, substance.col_span, substance.row_span) == ("Substance", 1, 2)
        assert (concentration.name, concentration.col_span, concentration.row_span) == ("Concentration", 2, 1)
        assert [(c.name, c.path) for c in rows[1]] == [
            ("Value", ("Concentration", "Value")),
            ("Unit", ("Concentration", "Unit")),
        ]

    def test_leaf_paths_follow_display_order(self):
        columns = parse_columns(COLUMNS)
        assert max_depth(columns) == 2
        assert leaf_paths(columns) == [("Substance",), ("Concentration", "Value"), ("Concentration", "Unit")]


# ============= Rows =============

class TestRows:
    def test_empty_row_mirrors_column_tree(self):
        assert empty_row(parse_columns(COLUMNS)) == {
            "Substance": "",
            "Concentration": {"Value": None, "Unit": ""},
        }

    def test_row_edits_do_not_mutate_the_input(self):
        columns = parse_columns(COLUMNS)
        rows = add_row([], columns)
        edited = update_cell(rows, 0, ["Concentration", "Value"], 12.5)

        assert rows[0]["Concentration"]["Value"] is None
        assert edited[0]["Concentration"]["Value"] == 12.5

    def test_three_row_table_validates_to_the_same_value(self):
        columns = parse_columns(COLUMNS)
        rows = []
        for i, (name, value, unit) in enumerate([("Lead", 0.05, "%"), ("Cadmium", 40, "ppm"), ("DEHP", 0.2, "%")]):
            rows = add_row(rows, columns)
            rows = update_cell(rows, i, ["Substance"], name)
            rows = update_cell(rows, i, ["Concentration", "Value"], value)
            rows = update_cell(rows, i, ["Concentration", "Unit"], unit)

        assert validate_answer(QuestionType.LIST_TABLE, COLUMNS, rows) == rows
        assert rows[1] == {"Substance": "Cadmium", "Concentration": {"Value": 40, "Unit": "ppm"}}

    def test_delete_row_out_of_range(self):
        with pytest.raises(ValidationError):
            delete_row([{"Substance": "Lead"}], 3)

    def test_delete_row_keeps_other_rows(self):
        rows = [{"Substance": "Lead"}, {"Substance": "Cadmium"}]
        assert delete_row(rows, 0) == [{"Substance": "Cadmium"}]
        assert len(rows) == 2


# ============= Options & answers =============

class TestOptions:
    def test_select_questions_require_options(self):
        with pytest.raises(ValidationError):
            validate_options(QuestionType.SINGLE_SELECT, [])

    def test_select_options_are_trimmed(self):
        assert validate_options(QuestionType.MULTI_SELECT, [" Lead ", "Mercury"]) == ["Lead", "Mercury"]

    def test_text_question_takes_no_options(self):
        assert validate_options(QuestionType.TEXT, None) is None
        with pytest.raises(ValidationError):
            validate_options(QuestionType.TEXT, ["a"])

    def test_table_options_are_normalized(self):
        assert validate_options(QuestionType.LIST_TABLE, COLUMNS) == COLUMNS


class TestAnswers:
    def test_none_means_not_answered_for_every_type(self):
        for qtype in QuestionType:
            assert validate_answer(qtype, None, None) is None

    def test_number_accepts_numeric_strings(self):
        assert validate_answer(QuestionType.NUMBER, None, "42") == 42
        assert validate_answer(QuestionType.NUMBER, None, "2.5") == 2.5

    def test_number_rejects_booleans(self):
        with pytest.raises(ValidationError):
            validate_answer(QuestionType.NUMBER, None, True)

    @pytest.mark.parametrize("value", ["nan", "inf", "-Infinity", "1e400", float("nan"), float("inf")])
    def test_number_must_be_finite(self, value):
        with pytest.raises(ValidationError, match="expected a number"):
            validate_answer(QuestionType.NUMBER, None, value)

    @pytest.mark.parametrize("value", ["nan", "inf", float("nan")])
    def test_table_number_cell_must_be_finite(self, value):
        row = {"Substance": "Lead", "Concentration": {"Value": value, "Unit": "%"}}
        with pytest.raises(ValidationError, match="expected a number"):
            validate_answer(QuestionType.LIST_TABLE, COLUMNS, [row])

    def test_single_select_must_be_an_option(self):
        with pytest.raises(ValidationError):
            validate_answer(QuestionType.SINGLE_SELECT, ["Germany", "France"], "Spain")

    def test_multi_select_drops_duplicates(self):
        assert validate_answer(QuestionType.MULTI_SELECT, ["Lead", "Mercury"], ["Lead", "Lead"]) == ["Lead"]

    def test_date_is_normalized(self):
        assert validate_answer(QuestionType.DATE, None, "2024-03-01T00:00:00Z") == "2024-03-01"
        with pytest.raises(ValidationError):
            validate_answer(QuestionType.DATE, None, "03/01/2024")

    @pytest.mark.parametrize("value", ["2024-01-01garbage", "2024-01-01T", "2024-01-01Tnoon"])
    def test_date_rejects_trailing_text(self, value):
        with pytest.raises(ValidationError):
            validate_answer(QuestionType.DATE, None, value)

    def test_table_rejects_unknown_columns(self):
        with pytest.raises(ValidationError, match="unknown column"):
            validate_answer(QuestionType.LIST_TABLE, COLUMNS, [{"Colour": "red"}])

    def test_table_select_cell_must_be_an_option(self):
        row = {"Substance": "Lead", "Concentration": {"Value": 1, "Unit": "kg"}}
        with pytest.raises(ValidationError):
            validate_answer(QuestionType.LIST_TABLE, COLUMNS, [row])

    def test_component_answers_live_outside_the_answer(self):
        assert validate_answer(QuestionType.COMPONENT_MATERIAL_LIST, None, {}) == {}
        with pytest.raises(ValidationError):
            validate_answer(QuestionType.COMPONENT_MATERIAL_LIST, None, {"components": []})


class TestDisplay:
    def test_format_answer(self):
        assert format_answer(QuestionType.BOOLEAN, None, False) == "No"
        assert format_answer(QuestionType.MULTI_SELECT, ["a"], ["a", "b"]) == "a, b"
        assert format_answer(QuestionType.LIST_TABLE, COLUMNS, [{}]) == "1 row"
        assert format_answer(QuestionType.TEXT, None, None) == "No answer provided"

    def test_is_answered(self):
        assert is_answered(QuestionType.TEXT, "Acme") is True
        assert is_answered(QuestionType.TEXT, "") is False
        assert is_answered(QuestionType.BOOLEAN, False) is True
        assert is_answered(QuestionType.LIST_TABLE, []) is False
