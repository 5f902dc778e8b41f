"""
Tests for display formatting and key mapping.
"""

import pytest

from calcpad.display import expression_preview, format_display, pretty_operator
from calcpad.engine import (
    DIVIDE_BY_ZERO,
    ERROR,
    Backspace,
    Clear,
    Decimal,
    Digit,
    EngineState,
    Equals,
    Operator,
    OperatorPress,
    ToggleSign,
)
from calcpad.keymap import BUTTONS, action_for_key, normalize_operator


class TestFormatDisplay:
    """Test the display formatter."""

    @pytest.mark.parametrize("value", [ERROR, DIVIDE_BY_ZERO])
    def test_sentinels_pass_through(self, value):
        assert format_display(value) == value

    @pytest.mark.parametrize("value", ["0", "-12.5", "0.", "123456789012345678"])
    def test_short_literals_unchanged(self, value):
        assert format_display(value) == value

    def test_float_noise_is_rounded_away(self):
        assert format_display("0.30000000000000004") == "0.3"
        assert format_display("-0.30000000000000004") == "-0.3"

    def test_long_number_fits_display(self):
        """Long results are shortened to the width with bounded error."""
        true_value = 12345678901234567890
        rendered = format_display(str(true_value))
        assert len(rendered) <= 18
        assert abs(float(rendered) - true_value) / true_value < 1e-11

    @pytest.mark.parametrize("value", [
        "1.2345678901234567e+300",
        "-1.2345678901234567e-300",
        "-98765432109876543210.5",
        "0.000000012345678901234567",
    ])
    def test_display_budget_holds(self, value):
        rendered = format_display(value)
        assert len(rendered) <= 18
        assert float(rendered) == pytest.approx(float(value), rel=1e-9)

    def test_narrow_display(self):
        rendered = format_display("-1.2345678901234567e-300", max_len=8)
        assert len(rendered) <= 8
        assert rendered == "-1e-300"

    def test_non_finite_long_value_is_error(self):
        assert format_display("9" * 400) == ERROR

    def test_garbage_long_value_is_error(self):
        assert format_display("not-a-number-at-all-really") == ERROR


class TestExpressionPreview:
    """Test the pending-operation preview line."""

    def test_no_preview_without_pending(self):
        assert expression_preview(EngineState(current="12")) is None

    def test_preview_uses_glyphs(self):
        state = EngineState(current="3", previous="12", operator=Operator.MULTIPLY)
        assert expression_preview(state) == "12 ×"
        state = EngineState(current="3", previous="12", operator=Operator.DIVIDE)
        assert expression_preview(state) == "12 ÷"

    def test_preview_formats_operand(self):
        state = EngineState(current="0", previous="0.30000000000000004", operator=Operator.ADD)
        assert expression_preview(state) == "0.3 +"

    def test_no_preview_for_operator_alone(self):
        assert expression_preview(EngineState(current="0", operator=Operator.ADD)) is None

    @pytest.mark.parametrize("op, glyph", [("+", "+"), ("-", "-"), ("*", "×"), ("/", "÷"), ("%", "%")])
    def test_pretty_operator(self, op, glyph):
        assert pretty_operator(Operator(op)) == glyph


class TestKeymap:
    """Test raw key to action mapping."""

    @pytest.mark.parametrize("key, action", [
        ("7", Digit("7")),
        (".", Decimal()),
        ("Enter", Equals()),
        ("=", Equals()),
        ("Escape", Clear()),
        ("C", Clear()),
        ("Backspace", Backspace()),
        ("⌫", Backspace()),
        ("±", ToggleSign()),
        ("+", OperatorPress(Operator.ADD)),
        ("×", OperatorPress(Operator.MULTIPLY)),
        ("÷", OperatorPress(Operator.DIVIDE)),
        ("%", OperatorPress(Operator.REMAINDER)),
    ])
    def test_mapped_keys(self, key, action):
        assert action_for_key(key) == action

    @pytest.mark.parametrize("key", ["a", "Shift", "^", "", "12"])
    def test_unmapped_keys(self, key):
        assert action_for_key(key) is None

    def test_normalize_operator(self):
        assert normalize_operator("×") == Operator.MULTIPLY
        assert normalize_operator("÷") == Operator.DIVIDE
        assert normalize_operator("x") is None

    def test_every_button_maps_to_an_action(self):
        for row in BUTTONS:
            for button in row:
                assert action_for_key(button.label) is not None, button.label
