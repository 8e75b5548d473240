from exscout_core.field_classifier import DetectedField, ElementInfo, FillResult, pick_field
from exscout_core.learning import apply_learned_selectors, record_fill_outcome
from exscout_core.patterns import EngineType, FieldPurpose


def detected(selector, purpose, confidence=0.9, name=""):
    return DetectedField(selector=selector, purpose=purpose, confidence=confidence, element=ElementInfo(name=name))


class TestApplyLearnedSelectors:
    def test_learned_fields_move_to_front(self, store):
        for _ in range(3):
            store.record_success("ex.com", "unknown", "wallet", "#payout")
        store.record_success("ex.com", "unknown", "wallet", "#wallet2")

        fields = [
            detected("#sum1", FieldPurpose.AMOUNT_FROM, 0.95, name="sum1"),
            detected("#wallet", FieldPurpose.WALLET, 0.9, name="wallet"),
            detected("#wallet2", FieldPurpose.WALLET, 0.9),
            detected("#payout", FieldPurpose.WALLET, 0.9),
        ]

        ranked = apply_learned_selectors(fields, store, "ex.com")

        assert [f.selector for f in ranked] == ["#payout", "#wallet2", "#sum1", "#wallet"]
        assert ranked[0].learned and ranked[1].learned
        assert not fields[3].learned
        assert pick_field(ranked, FieldPurpose.WALLET).selector == "#payout"

    def test_other_domain_history_ignored(self, store):
        store.record_success("other.com", "unknown", "wallet", "#payout")
        fields = [detected("#wallet", FieldPurpose.WALLET), detected("#payout", FieldPurpose.WALLET)]

        ranked = apply_learned_selectors(fields, store, "ex.com")

        assert [f.selector for f in ranked] == ["#wallet", "#payout"]
        assert not any(f.learned for f in ranked)

    def test_learned_submit_button_preferred(self, store):
        store.record_success("ex.com", "premium-exchanger", "submit", ".xchange_submit")
        fields = [
            detected("#go", FieldPurpose.SUBMIT, 0.8),
            detected(".xchange_submit", FieldPurpose.SUBMIT, 0.8),
        ]

        ranked = apply_learned_selectors(fields, store, "ex.com")

        assert pick_field(ranked, FieldPurpose.SUBMIT).selector == ".xchange_submit"

    def test_read_only(self, store):
        apply_learned_selectors([detected("#w", FieldPurpose.WALLET)], store, "ex.com")
        assert store.get_statistics()["total_patterns"] == 0


class TestRecordFillOutcome:
    def test_success_records_written_selectors(self, store):
        result = FillResult(
            filled_fields=["amount", "wallet"],
            selectors={"amount": "#sum1", "wallet": "#w"},
            attempted={"amount": "#sum1", "wallet": "#w", "email": "#e"},
        )

        touched = record_fill_outcome(store, "ex.com", EngineType.VUE_SPA, [], result, success=True)

        assert touched == 2
        pattern = store.get_pattern("ex.com", "amount", "#sum1")
        assert pattern.success_count == 1
        assert pattern.engine_type == "vue-spa"
        assert store.get_pattern("ex.com", "email", "#e") is None

    def test_success_records_clicked_submit(self, store):
        result = FillResult(filled_fields=["amount"], selectors={"amount": "#sum1", "submit": "#go"})

        touched = record_fill_outcome(store, "ex.com", "box-exchanger", [], result, success=True)

        assert touched == 2
        assert store.get_best_selectors("ex.com", "submit") == ["#go"]

    def test_failure_records_attempted_selectors(self, store):
        result = FillResult(
            filled_fields=["amount"],
            errors=["Could not fill wallet"],
            selectors={"amount": "#sum1"},
            attempted={"amount": "#sum1", "wallet": "#w"},
        )

        record_fill_outcome(store, "ex.com", "multipage", [], result, success=False)

        assert store.get_pattern("ex.com", "amount", "#sum1").fail_count == 1
        assert store.get_pattern("ex.com", "wallet", "#w").fail_count == 1

    def test_failure_without_attempts_uses_chosen_fields(self, store):
        fields = [detected("#sum1", FieldPurpose.AMOUNT_FROM, 0.95, name="sum1")]

        record_fill_outcome(store, "ex.com", "unknown", fields, FillResult(), success=False)

        assert store.get_pattern("ex.com", "amount", "#sum1").fail_count == 1
