"""
Tests for field purpose classification and form filling
"""

import pytest
from unittest.mock import AsyncMock

from exscout_core.field_classifier import (
    DetectedField,
    FillResult,
    ElementInfo,
    FormValues,
    analyze_form,
    build_fields,
    classify_element,
    click_submit,
    fill_field,
    fill_form,
    format_amount,
    has_required_fields,
    pick_field,
)
from exscout_core.patterns import FieldPurpose


def raw(**kwargs):
    data = {"tag": "input", "type": "text", "visible": True}
    data.update(kwargs)
    return data


def detected(selector, purpose, confidence=0.9, name="", learned=False):
    return DetectedField(
        selector=selector,
        purpose=purpose,
        confidence=confidence,
        element=ElementInfo(tag="input", type="text", name=name),
        learned=learned,
    )


class TestClassifyElement:
    @pytest.mark.parametrize("element,purpose,confidence", [
        (raw(name="sum1"), FieldPurpose.AMOUNT_FROM, 0.95),
        (raw(placeholder="Сумма"), FieldPurpose.AMOUNT_FROM, 0.95),
        (raw(name="sum2"), FieldPurpose.AMOUNT_TO, 0.8),
        (raw(placeholder="Вы получите"), FieldPurpose.AMOUNT_TO, 0.8),
        (raw(name="account2"), FieldPurpose.CARD, 0.95),
        (raw(label="Номер карты"), FieldPurpose.CARD, 0.95),
        (raw(name="wallet_address"), FieldPurpose.WALLET, 0.9),
        (raw(label="Card number"), FieldPurpose.CARD, 0.9),
        (raw(type="email", name="user_mail"), FieldPurpose.EMAIL, 0.95),
        (raw(name="fio"), FieldPurpose.NAME, 0.85),
        (raw(type="tel", name="phone"), FieldPurpose.PHONE, 0.9),
        (raw(tag="button", type="submit", text="Обменять"), FieldPurpose.SUBMIT, 0.8),
    ])
    def test_purposes(self, element, purpose, confidence):
        result_purpose, result_confidence, rule = classify_element(element)
        assert result_purpose == purpose
        assert result_confidence == confidence
        assert rule is not None

    def test_technical_field_excluded(self):
        purpose, confidence, rule = classify_element(raw(type="hidden", name="csrf_token"))
        assert purpose == FieldPurpose.UNKNOWN
        assert rule == "technical"

    def test_crypto_address_slot_is_never_a_wallet(self):
        purpose, _, rule = classify_element(raw(name="account1", placeholder="Wallet address"))
        assert purpose == FieldPurpose.UNKNOWN
        assert rule == "crypto-address-slot"

    def test_no_rule(self):
        assert classify_element(raw(name="promo")) == (FieldPurpose.UNKNOWN, 0.0, None)


class TestBuildFields:
    def test_visibility_and_ranking(self):
        fields = build_fields([
            raw(name="fio", selector='input[name="fio"]'),
            raw(name="sum1", selector='input[name="sum1"]'),
            raw(name="email", visible=False, selector='input[name="email"]'),
            raw(type="hidden", name="direction_id", visible=False, selector='input[name="direction_id"]'),
            raw(tag="button", type="submit", visible=False, text="Go", selector="button"),
            raw(type="checkbox", name="agree", selector='input[name="agree"]'),
            raw(name="promo", selector='input[name="promo"]'),
        ])
        selectors = [f.selector for f in fields]
        assert selectors == [
            'input[name="sum1"]',
            'input[name="fio"]',
            "button",
            'input[name="promo"]',
        ]
        assert fields[-1].purpose == FieldPurpose.UNKNOWN

    def test_empty(self):
        assert build_fields([]) == []


class TestPickField:
    def test_canonical_name_beats_confidence(self):
        fields = [
            detected("#give", FieldPurpose.AMOUNT_FROM, 0.95, name="give"),
            detected("#sum1", FieldPurpose.AMOUNT_FROM, 0.9, name="sum1"),
        ]
        assert pick_field(fields, FieldPurpose.AMOUNT_FROM).selector == "#sum1"

    def test_highest_confidence_without_canonical(self):
        fields = [
            detected("#a", FieldPurpose.WALLET, 0.8, name="a"),
            detected("#b", FieldPurpose.WALLET, 0.9, name="b"),
        ]
        assert pick_field(fields, FieldPurpose.WALLET).selector == "#b"

    def test_learned_first(self):
        fields = [
            detected("#sum1", FieldPurpose.AMOUNT_FROM, 0.95, name="sum1"),
            detected("#other", FieldPurpose.AMOUNT_FROM, 0.9, name="other", learned=True),
        ]
        assert pick_field(fields, FieldPurpose.AMOUNT_FROM).selector == "#other"

    def test_missing(self):
        assert pick_field([], FieldPurpose.EMAIL) is None


class TestFormatAmount:
    def test_no_scientific_notation(self):
        assert format_amount(1e-05) == "0.00001"
        assert format_amount(0.5) == "0.5"
        assert format_amount(100) == "100"
        assert format_amount(1.0) == "1"


class TestRequiredFields:
    def test_complete(self):
        fields = [detected("#s", FieldPurpose.AMOUNT_FROM), detected("#c", FieldPurpose.CARD)]
        assert has_required_fields(fields) == (True, [])

    def test_missing_both(self):
        ok, missing = has_required_fields([detected("#e", FieldPurpose.EMAIL)])
        assert ok is False
        assert missing == ["amount_from", "wallet/card"]


@pytest.mark.asyncio
class TestFillForm:
    async def test_card_field_wins_over_wallet(self):
        page = AsyncMock()
        page.evaluate = AsyncMock(return_value=True)
        fields = [
            detected("#sum1", FieldPurpose.AMOUNT_FROM, 0.95, name="sum1"),
            detected("#account2", FieldPurpose.CARD, 0.95, name="account2"),
            detected("#wallet", FieldPurpose.WALLET, 0.9, name="wallet"),
            detected("#email", FieldPurpose.EMAIL, 0.95, name="email"),
        ]
        values = FormValues(amount=0.00001, wallet="4276000011112222", email="a@b.c")

        result = await fill_form(page, fields, values, settle_ms=250)

        assert result.filled_fields == ["amount", "card", "email"]
        assert result.errors == []
        assert result.success
        assert result.selectors == {"amount": "#sum1", "card": "#account2", "email": "#email"}
        written = [c.args[1] for c in page.evaluate.await_args_list]
        assert written == [["#sum1", "0.00001"], ["#account2", "4276000011112222"], ["#email", "a@b.c"]]
        page.wait_for_timeout.assert_awaited_once_with(250)

    async def test_wallet_when_no_card_field(self):
        page = AsyncMock()
        page.evaluate = AsyncMock(return_value=True)
        fields = [detected("#addr", FieldPurpose.WALLET, 0.9, name="address")]

        result = await fill_form(page, fields, FormValues(wallet="TQkrGBcbo5HC6wFKAZh1X8kRJGCskbgNa2"), settle_ms=0)

        assert result.filled_fields == ["wallet"]
        page.wait_for_timeout.assert_not_awaited()

    async def test_unfillable_field_reported(self):
        page = AsyncMock()
        page.evaluate = AsyncMock(side_effect=Exception("detached"))
        fields = [detected("#sum1", FieldPurpose.AMOUNT_FROM, 0.95, name="sum1")]

        result = await fill_form(page, fields, FormValues(amount=1), settle_ms=0)

        assert result.filled_fields == []
        assert result.errors == ["Could not fill amount"]
        assert result.attempted == {"amount": "#sum1"}
        assert not result.success


@pytest.mark.asyncio
class TestPageInteraction:
    async def test_fill_field_falls_back_to_element_fill(self):
        element = AsyncMock()
        page = AsyncMock()
        page.evaluate = AsyncMock(return_value=False)
        page.query_selector = AsyncMock(return_value=element)

        assert await fill_field(page, "#sum1", "0.5") is True
        element.fill.assert_awaited_once_with("0.5")

    async def test_fill_field_missing_element(self):
        page = AsyncMock()
        page.evaluate = AsyncMock(return_value=False)
        page.query_selector = AsyncMock(return_value=None)

        assert await fill_field(page, "#nope", "x") is False

    async def test_analyze_form(self):
        page = AsyncMock()
        page.evaluate = AsyncMock(return_value=[
            raw(name="sum1", selector='input[name="sum1"]'),
            raw(name="account2", selector='input[name="account2"]'),
        ])

        fields = await analyze_form(page)

        assert [f.purpose for f in fields] == [FieldPurpose.AMOUNT_FROM, FieldPurpose.CARD]
        assert has_required_fields(fields)[0]

    async def test_click_detected_submit(self):
        button = AsyncMock()
        page = AsyncMock()
        page.query_selector = AsyncMock(return_value=button)
        fields = [detected("#go", FieldPurpose.SUBMIT, 0.8)]

        assert await click_submit(page, fields) is True
        page.query_selector.assert_awaited_once_with("#go")
        button.click.assert_awaited_once()

    async def test_click_submit_fallback(self):
        button = AsyncMock()
        button.is_visible = AsyncMock(return_value=True)
        page = AsyncMock()

        async def query(selector):
            return button if selector == 'input[type="submit"]' else None

        page.query_selector = AsyncMock(side_effect=query)

        assert await click_submit(page, []) is True
        button.click.assert_awaited_once()

    async def test_click_submit_reports_selector(self):
        page = AsyncMock()
        page.query_selector = AsyncMock(return_value=AsyncMock())
        result = FillResult(filled_fields=["amount"], selectors={"amount": "#sum1"})

        assert await click_submit(page, [detected("#go", FieldPurpose.SUBMIT, 0.8)], result) is True

        assert result.selectors == {"amount": "#sum1", "submit": "#go"}
        assert result.attempted["submit"] == "#go"
        assert result.filled_fields == ["amount"]

    async def test_failed_submit_click_is_only_attempted(self):
        button = AsyncMock()
        button.click = AsyncMock(side_effect=RuntimeError("detached"))
        button.is_visible = AsyncMock(return_value=False)
        page = AsyncMock()
        page.query_selector = AsyncMock(return_value=button)
        result = FillResult()

        assert await click_submit(page, [detected("#go", FieldPurpose.SUBMIT, 0.8)], result) is False

        assert result.attempted == {"submit": "#go"}
        assert "submit" not in result.selectors

    async def test_click_submit_nothing_found(self):
        page = AsyncMock()
        page.query_selector = AsyncMock(return_value=None)
        assert await click_submit(page, []) is False
