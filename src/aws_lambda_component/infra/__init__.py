"""Provider-facing reconciliation engine for aws-lambda-component."""
