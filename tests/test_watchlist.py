from services.strategy.universe import DEFAULT_WATCHLIST, Watchlist


def test_default_watchlist() -> None:
    watchlist = Watchlist()
    assert len(watchlist) == 32
    assert watchlist.get()[:3] == ["AAPL", "MSFT", "GOOGL"]
    assert "spy" in watchlist
    assert watchlist.trending == set()


def test_symbols_are_normalised_and_deduplicated() -> None:
    watchlist = Watchlist([" aapl", "MSFT", "AAPL", ""])
    assert watchlist.get() == ["AAPL", "MSFT"]


def test_empty_base_falls_back_to_defaults() -> None:
    assert Watchlist([]).get() == list(DEFAULT_WATCHLIST)


def test_reset_restores_base() -> None:
    watchlist = Watchlist(["AAPL"])
    watchlist.symbols.append("ROKU")
    watchlist.reset()
    assert list(watchlist) == ["AAPL"]
    assert 42 not in watchlist
