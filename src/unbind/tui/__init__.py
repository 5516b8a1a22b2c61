"""Terminal dashboard for unbind."""
