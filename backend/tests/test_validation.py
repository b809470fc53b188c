import pytest
from pydantic import BaseModel, ValidationError

from backend.app.validation import BranchCode, NullishText, PaymentMethod, clamp_limit


class _M(BaseModel):
    method: PaymentMethod
    note: NullishText = None
    branch: BranchCode = "moncar"


def test_validation_types_normalize():
    m = _M(method=" Efectivo ", note="  hola ", branch=" centro ")
    assert m.method == "efectivo"
    assert m.note == "hola"
    assert m.branch == "centro"


def test_blank_text_collapses_to_none():
    assert _M(method="debito", note="   ").note is None


def test_payment_method_rejects_blank():
    with pytest.raises(ValidationError):
        _M(method="   ")


@pytest.mark.parametrize(
    "raw,expected",
    [(None, 100), ("", 100), ("abc", 100), ("25", 25), (0, 1), (-3, 1), (5000, 200)],
)
def test_clamp_limit(raw, expected):
    assert clamp_limit(raw, default=100, maximum=200) == expected
