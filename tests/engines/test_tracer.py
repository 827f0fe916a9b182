"""Tests for the engine tracer (settlement_engines/tracer.py)."""

from decimal import Decimal

from settlement_engines.tracer import compute_input_fingerprint, traced_engine


class TestInputFingerprint:
    """compute_input_fingerprint is deterministic and order-aware."""

    def test_deterministic(self):
        kwargs = {"amount": Decimal("1.00"), "lines": [1, 2]}
        a = compute_input_fingerprint(("amount", "lines"), kwargs)
        b = compute_input_fingerprint(("amount", "lines"), dict(kwargs))
        assert a == b
        assert len(a) == 16

    def test_dict_key_order_ignored(self):
        a = compute_input_fingerprint(("d",), {"d": {"x": 1, "y": 2}})
        b = compute_input_fingerprint(("d",), {"d": {"y": 2, "x": 1}})
        assert a == b

    def test_sequence_order_matters(self):
        a = compute_input_fingerprint(("s",), {"s": [1, 2]})
        b = compute_input_fingerprint(("s",), {"s": [2, 1]})
        assert a != b

    def test_missing_field_recorded_as_null(self):
        a = compute_input_fingerprint(("missing",), {})
        b = compute_input_fingerprint(("missing",), {"missing": None})
        assert a == b

    def test_change_to_last_of_many_drafts_detected(self):
        drafts = [{"invoice_id": f"inv-{i}", "amount": Decimal("10.00")} for i in range(200)]
        edited = [dict(d) for d in drafts]
        edited[-1]["amount"] = Decimal("10.01")

        a = compute_input_fingerprint(("drafts",), {"drafts": drafts})
        b = compute_input_fingerprint(("drafts",), {"drafts": edited})
        assert a != b


class TestTracedEngine:
    """@traced_engine wraps calls and logs one trace per call."""

    def test_returns_result_and_logs(self, captured_logs):
        @traced_engine("demo", "2.1", fingerprint_fields=("x",))
        def double(*, x):
            return x * 2

        assert double(x=Decimal("2.50")) == Decimal("5.00")

        traces = [r for r in captured_logs() if r["message"] == "SETTLEMENT_ENGINE_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["trace_type"] == "SETTLEMENT_ENGINE_TRACE"
        assert trace["engine_name"] == "demo"
        assert trace["engine_version"] == "2.1"
        assert trace["function"].endswith("double")
        assert trace["duration_ms"] >= 0

    def test_no_fingerprint_fields_gives_empty_fingerprint(self, captured_logs):
        @traced_engine("demo", "1.0")
        def noop():
            return None

        noop()
        trace = [r for r in captured_logs() if r["message"] == "SETTLEMENT_ENGINE_TRACE"][0]
        assert trace["input_fingerprint"] == ""
