"""Built-in starter configurations."""
from __future__ import annotations

from floworx_approval.templates.workflow_templates import (
    get_template,
    list_templates,
    write_template,
)

__all__ = ["get_template", "list_templates", "write_template"]
