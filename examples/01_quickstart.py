#!/usr/bin/env python3
"""Example: Quickstart — floworx-approval-engine

Minimal working example: define a workflow, gate two AI-drafted replies
behind it, and approve the one that needs a human.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install floworx-approval-engine
"""
from __future__ import annotations

import floworx_approval as fa

CONFIG = """
recipients:
  managers:
    shop: [boss@example.com]
workflows:
  - id: refund-replies
    name: Refund replies
    owner_id: shop
    timeout_hours: 24
    auto_approve_conditions:
      - type: small_amount
        parameters: {threshold: 50}
    approval_steps:
      - type: manager_approval
        description: Check the refund before the reply goes out.
"""


def main() -> None:
    print(f"floworx-approval-engine version: {fa.__version__}")

    # Step 1: Build the engine from configuration
    dispatcher = fa.RecordingDispatcher()
    config = fa.ConfigLoader().load_string(CONFIG)
    with fa.ApprovalEngine.from_config(config, dispatcher=dispatcher) as engine:
        print(f"Workflows loaded: {[w.id for w in engine.store.list_workflows()]}")

        # Step 2: Trigger two replies
        drafts = [
            {"from": "amy@example.com", "subject": "Refund", "body": "Please refund $20"},
            {"from": "bob@example.com", "subject": "Refund", "body": "Please refund $400"},
        ]
        pending = None
        print("\nTriggers:")
        for draft in drafts:
            trigger = engine.create_request("refund-replies", draft)
            if trigger.auto_approved:
                print(f"  [AUTO] {draft['body']!r} via {trigger.matched_condition}")
            else:
                pending = trigger.request
                print(f"  [WAIT] {draft['body']!r} -> request {pending.request_id}")

        # Step 3: Notifications went to the manager
        for notification in dispatcher.sent:
            print(f"\nNotified {notification.recipient}: {notification.subject}")
            print(f"  {notification.action_link}")

        # Step 4: The manager approves
        if pending is not None:
            result = engine.apply_decision(pending.request_id, "approved", "boss", "Fine")
            print(f"\nDecision applied: status={result.status.value}")
            print(f"Pending approvals left: {len(engine.get_pending_approvals())}")


if __name__ == "__main__":
    main()
