#!/usr/bin/env python3
"""Example: Multi-step approval lifecycle — floworx-approval-engine

Walks a service-call reply through an automatic content check, a manager
approval and a customer confirmation, then shows a second request being
timed out by the sweeper.

Usage:
    python examples/02_approval_lifecycle.py

Requirements:
    pip install floworx-approval-engine
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import floworx_approval as fa

CONFIG = """
engine:
  timeout_policy: reject
recipients:
  managers:
    main: [service-manager@example.com]
workflows:
  - id: service-request
    name: Service call scheduling
    owner_id: main
    timeout_hours: 8
    approval_steps:
      - type: automatic_check
        parameters:
          checks: [content_filter]
      - type: manager_approval
        timeout_hours: 2
      - type: customer_confirmation
        parameters:
          subject: Service appointment
          message: Please confirm Tuesday 10:00 for your furnace inspection.
"""


def _show(request: fa.ApprovalRequest) -> None:
    step = request.current_step
    print(
        f"  status={request.status.value:<18} step={request.current_step_index + 1}/"
        f"{request.step_count} ({step.type.value}) deadline={request.deadline:%H:%M}"
    )


def main() -> None:
    now = datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc)
    dispatcher = fa.RecordingDispatcher()
    config = fa.ConfigLoader().load_string(CONFIG)

    with fa.ApprovalEngine.from_config(config, dispatcher=dispatcher, clock=lambda: now) as engine:
        payload = {"from": "carl@example.com", "subject": "Furnace noise", "body": "Can someone come by?"}

        print("1. Trigger: content check passes, manager is asked")
        request = engine.create_request("service-request", payload).request
        _show(request)

        print("2. Manager approves: customer is asked to confirm")
        request = engine.apply_decision(request.request_id, "approved", "service-manager").request
        _show(request)

        print("3. Customer confirms")
        request = engine.apply_decision(request.request_id, "approved", "carl@example.com").request
        _show(request)

        print("\nDecision log:")
        for entry in request.decision_log:
            print(f"  step {entry.step_index + 1}: {entry.outcome.value} by {entry.actor_id}")

        print("\nNotifications sent:")
        for notification in dispatcher.sent:
            print(f"  {notification.type:<22} -> {notification.recipient}")

        print("\n4. A second request nobody decides on")
        stale = engine.create_request("service-request", payload).request
        _show(stale)
        timed_out = engine.sweep(now + timedelta(hours=3))
        print(f"  sweep timed out {len(timed_out)} request(s)")
        _show(engine.manager.get_request(stale.request_id))


if __name__ == "__main__":
    main()
