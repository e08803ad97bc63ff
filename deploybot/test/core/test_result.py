from __future__ import annotations

import pytest

from deploybot.core.result import Err, Ok, Result, collect, is_err, is_ok


def _half(n: int) -> Result[int, str]:
    if n % 2:
        return Err(f"{n} is odd")
    return Ok(n // 2)


def test_ok_carries_value() -> None:
    result = Ok(3)
    assert result.is_ok()
    assert not result.is_err()
    assert result.unwrap() == 3
    assert result.unwrap_or(9) == 3
    assert result.map(lambda v: v + 1) == Ok(4)
    assert repr(result) == "Ok(3)"


def test_err_carries_error() -> None:
    result: Err[str] = Err("boom")
    assert result.is_err()
    assert result.unwrap_or(7) == 7
    assert result.map_err(str.upper) == Err("BOOM")
    with pytest.raises(ValueError, match="boom"):
        result.unwrap()


def test_type_guards() -> None:
    assert is_ok(_half(4))
    assert is_err(_half(3))


def test_pattern_matching() -> None:
    match _half(10):
        case Ok(value):
            assert value == 5
        case Err(error):
            pytest.fail(error)


def test_collect_stops_at_first_error() -> None:
    assert collect([_half(2), _half(4)]) == Ok([1, 2])
    assert collect([_half(2), _half(3), _half(5)]) == Err("3 is odd")
