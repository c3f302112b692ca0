"""Pure booking rules: policy, recurrence expansion and query predicates."""
