import json

import pytest

from peak_trading.execution.broker_api import Direction
from peak_trading.execution.execution_engine import Order
from peak_trading.state.engine_state import EngineState, PeakType
from peak_trading.state.persistence import (
    MalformedPositionRecord, StateSchemaError, StateStore, StatsStore, STATE_SCHEMA_VERSION,
    backup_files, load_positions, parse_position_line, write_positions
)


class TestStateStore:

    def test_missing_file_loads_none(self, tmp_path):
        assert StateStore(str(tmp_path / "state.json")).load() is None

    def test_save_and_load(self, tmp_path, make_tick):
        store = StateStore(str(tmp_path / "state.json"))
        state = EngineState(total_buy_trades=1, open_positions=[Order(Direction.BUY, 100.5, 100.0)],
                            min_tick=make_tick(100.0), max_tick=make_tick(100.5),
                            last_peak_kind=PeakType.BOTTOM)
        assert store.save(state)
        assert store.load() == state

        with open(store.filepath) as f:
            assert json.load(f)['schema_version'] == STATE_SCHEMA_VERSION

    def test_newer_schema_rejected(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({'schema_version': STATE_SCHEMA_VERSION + 1, 'state': {}}))
        with pytest.raises(StateSchemaError):
            StateStore(str(path)).load()

    def test_unversioned_rejected(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({'total_buy_trades': 1}))
        with pytest.raises(StateSchemaError):
            StateStore(str(path)).load()

    def test_corrupt_file_rejected(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(StateSchemaError):
            StateStore(str(path)).load()

    def test_save_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = StateStore(str(blocker / "state.json"))
        assert store.save(EngineState()) is False

    def test_no_temp_files_left(self, tmp_path):
        store = StateStore(str(tmp_path / "state.json"))
        store.save(EngineState())
        store.save(EngineState(total_tick_count=5))
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]


class TestPositions:

    @pytest.mark.parametrize("line,direction,price", [
        ("BUY:101.5", Direction.BUY, 101.5),
        ("sell:99.95\n", Direction.SELL, 99.95),
        (" Buy : 100 ", Direction.BUY, 100.0),
    ])
    def test_parse(self, line, direction, price):
        order = parse_position_line(line)
        assert order.direction == direction
        assert order.price == price
        assert order.expected_price == price

    @pytest.mark.parametrize("line", ["HOLD:100", "BUY:abc", "BUY:-1", "BUY:0", "BUY", "BUY:1:2", "BUY:nan"])
    def test_malformed(self, line):
        with pytest.raises(MalformedPositionRecord):
            parse_position_line(line, 3, "positions.txt")

    def test_missing_file_is_empty(self, tmp_path):
        assert load_positions(str(tmp_path / "positions.txt")) == []

    def test_load_skips_blank_lines(self, tmp_path):
        path = tmp_path / "positions.txt"
        path.write_text("BUY:100\n\nBUY:101.5\n")
        assert [o.price for o in load_positions(str(path))] == [100.0, 101.5]

    def test_mixed_directions_rejected(self, tmp_path):
        path = tmp_path / "positions.txt"
        path.write_text("BUY:100\nSELL:101\n")
        with pytest.raises(MalformedPositionRecord) as exc:
            load_positions(str(path))
        assert exc.value.line_no == 2

    def test_write_then_load(self, tmp_path):
        path = str(tmp_path / "positions.txt")
        write_positions(path, [Order(Direction.SELL, 99.5), Order(Direction.SELL, 98.25)])
        with open(path) as f:
            assert f.read() == "SELL:99.5\nSELL:98.25\n"
        assert [o.price for o in load_positions(path)] == [99.5, 98.25]


def test_backup_files(tmp_path):
    state = tmp_path / "state.json"
    state.write_text("{}")
    copied = backup_files([str(state), str(tmp_path / "missing.txt")], str(tmp_path / "backup"), stamp="X")
    assert len(copied) == 1
    assert (tmp_path / "backup" / "X_state.json").exists()


def test_stats_store_appends(tmp_path):
    store = StatsStore(str(tmp_path / "stats"))
    assert store.load('day').empty
    assert store.append('day', {'trade_date': '2024-01-15', 'num_trades': 2})
    assert store.append('day', {'trade_date': '2024-01-16', 'num_trades': 0})

    df = store.load('day')
    assert len(df) == 2
    assert list(df['num_trades']) == [2, 0]
