"""Test that the quickstart API works for floworx-approval-engine."""
from __future__ import annotations

QUICKSTART_YAML = """
recipients:
  managers:
    shop: [boss@example.com]
workflows:
  - id: refund-replies
    name: Refund replies
    owner_id: shop
    auto_approve_conditions:
      - type: small_amount
        parameters: {threshold: 50}
    approval_steps:
      - type: manager_approval
"""


def _engine():
    import floworx_approval as fa

    return fa.ApprovalEngine.from_config(fa.ConfigLoader().load_string(QUICKSTART_YAML))


def test_quickstart_import() -> None:
    import floworx_approval as fa

    assert fa.__version__
    assert "ApprovalEngine" in fa.__all__


def test_quickstart_small_refund_auto_approved() -> None:
    with _engine() as engine:
        trigger = engine.create_request("refund-replies", {"body": "Refund $20"})
        assert trigger.auto_approved is True


def test_quickstart_large_refund_needs_manager() -> None:
    from floworx_approval import ApprovalStatus

    with _engine() as engine:
        trigger = engine.create_request("refund-replies", {"body": "Refund $900"})
        assert trigger.request is not None
        assert trigger.request.status is ApprovalStatus.AWAITING_DECISION


def test_quickstart_decide() -> None:
    from floworx_approval import ApprovalStatus

    with _engine() as engine:
        request = engine.create_request("refund-replies", {"body": "Refund $900"}).request
        result = engine.apply_decision(request.request_id, "approved", "boss")
        assert result.status is ApprovalStatus.APPROVED


def test_quickstart_unknown_workflow() -> None:
    import pytest

    from floworx_approval import ValidationError

    with _engine() as engine, pytest.raises(ValidationError):
        engine.create_request("nope", {})
