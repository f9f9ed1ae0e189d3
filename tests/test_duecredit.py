from torch_almo._duecredit import _NoCitations, dcite


def test_dcite_keeps_function_behaviour() -> None:
    @dcite("10.1090/S0025-5718-1980-0572855-7", description="test citation")
    def double(x: int) -> int:
        return 2 * x

    assert double(3) == 6


def test_inactive_collector_records_nothing() -> None:
    due = _NoCitations()

    def func() -> int:
        return 1

    assert due.cite("entry", description="unused") is None
    assert due.dcite("10.1000/none")(func) is func
