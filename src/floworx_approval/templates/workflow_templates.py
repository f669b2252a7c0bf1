"""Built-in starter configurations for the approval engine.

Three templates are bundled:

- ``minimal``           — one reply workflow with the implicit owner approval
- ``service_business``  — reply workflows for a service/retail business
  (sales inquiries, service requests, warranty claims, parts orders)
- ``strict``            — every reply needs a content check and a manager,
  timed-out requests are rejected

Example
-------
>>> from floworx_approval.templates.workflow_templates import get_template, list_templates
>>> list_templates()
['minimal', 'service_business', 'strict']
>>> yaml_str = get_template("minimal")
"""
from __future__ import annotations

from pathlib import Path

# ---------------------------------------------------------------------------
# Template definitions
# ---------------------------------------------------------------------------

_MINIMAL = """\
# Minimal approval configuration
# ------------------------------
# Every AI-drafted reply waits for the business owner unless the sender is
# a known customer.

version: "1"

engine:
  sweep_interval_seconds: 60
  timeout_policy: timeout

notifications:
  app_url: https://app.floworx-iq.com

recipients:
  owners:
    main: owner@example.com

store:
  path: ./approval_requests.db

audit:
  log_path: ./approval_audit.jsonl

workflows:
  - id: ai-replies
    name: AI reply approval
    description: Owner signs off on AI-drafted replies.
    owner_id: main
    timeout_hours: 24
    auto_approve_conditions:
      - type: known_customer
"""

_SERVICE_BUSINESS = """\
# Service business approval configuration
# ---------------------------------------
# Routine replies go out on their own; quotes, service calls and warranty
# claims are reviewed before the AI draft is sent.

version: "1"

engine:
  default_timeout_hours: 24
  sweep_interval_seconds: 60
  timeout_policy: timeout
  lookup_timeout_seconds: 2

notifications:
  app_url: https://app.floworx-iq.com
  webhook_format: generic

business_hours:
  timezone: America/New_York
  schedule:
    monday:    {open: true, start: "09:00", end: "17:00"}
    tuesday:   {open: true, start: "09:00", end: "17:00"}
    wednesday: {open: true, start: "09:00", end: "17:00"}
    thursday:  {open: true, start: "09:00", end: "17:00"}
    friday:    {open: true, start: "09:00", end: "17:00"}
    saturday:  {open: false}
    sunday:    {open: false}

recipients:
  managers:
    main:
      - sales-manager@example.com
      - service-manager@example.com
  owners:
    main: owner@example.com

store:
  path: ./approval_requests.db

audit:
  log_path: ./approval_audit.jsonl

workflows:
  - id: sales-inquiry
    name: Sales lead response
    description: Quotes and pricing replies.
    owner_id: main
    priority: 7
    timeout_hours: 24
    auto_approve_conditions:
      - type: routine_category
      - type: standard_request
        parameters:
          keywords: [brochure, showroom hours, directions]
    approval_steps:
      - type: automatic_check
        parameters:
          checks: [business_hours, content_filter]
      - type: manager_approval
        description: Check pricing before the quote goes out.
        timeout_hours: 4

  - id: service-request
    name: Service call scheduling
    description: Replies that commit a technician visit.
    owner_id: main
    priority: 9
    timeout_hours: 8
    auto_approve_conditions:
      - type: low_urgency
    approval_steps:
      - type: manager_approval
        timeout_hours: 2
      - type: customer_confirmation
        parameters:
          subject: Service appointment
          message: Please confirm the proposed service appointment.
        timeout_hours: 48

  - id: warranty-claim
    name: Warranty processing
    description: Warranty coverage replies need an external review.
    owner_id: main
    priority: 8
    timeout_hours: 72
    approval_steps:
      - type: automatic_check
        parameters:
          checks: [customer_history, content_filter]
      - type: external_review
        parameters:
          reviewers:
            - name: Warranty desk
              email: warranty@example.com
              department: warranty

  - id: parts-order
    name: Parts order processing
    description: Small parts orders go straight through.
    owner_id: main
    priority: 5
    auto_approve_conditions:
      - type: small_amount
        parameters:
          threshold: 100
"""

_STRICT = """\
# Strict approval configuration
# -----------------------------
# No auto-approval.  Every reply is content-checked and signed off by a
# manager.  Requests nobody decides on are rejected.

version: "1"

engine:
  sweep_interval_seconds: 30
  timeout_policy: reject

recipients:
  managers:
    main: [manager@example.com]

store:
  path: ./approval_requests.db

audit:
  log_path: ./approval_audit.jsonl

workflows:
  - id: all-replies
    name: Reviewed replies
    owner_id: main
    timeout_hours: 12
    approval_steps:
      - type: automatic_check
        parameters:
          checks: [content_filter]
      - type: manager_approval
"""

TEMPLATES: dict[str, str] = {
    "minimal": _MINIMAL,
    "service_business": _SERVICE_BUSINESS,
    "strict": _STRICT,
}


def get_template(name: str) -> str:
    """Return the YAML text of a built-in template.

    Raises
    ------
    KeyError
        If no template with the given name is registered.
    """
    if name not in TEMPLATES:
        available = ", ".join(sorted(TEMPLATES))
        raise KeyError(f"Template {name!r} not found. Available templates: {available}.")
    return TEMPLATES[name]


def list_templates() -> list[str]:
    """Return a sorted list of all built-in template names."""
    return sorted(TEMPLATES)


def write_template(name: str, output_path: Path) -> Path:
    """Write a built-in template to a file.

    Parent directories are created automatically if they do not exist.

    Returns
    -------
    Path
        The absolute path of the written file.

    Raises
    ------
    KeyError
        If no template with the given name is registered.
    """
    content = get_template(name)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(content, encoding="utf-8")
    return output_path.resolve()
