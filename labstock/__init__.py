"""Lab consumable stock tracking: people, vendors, categories and an ADD/ISSUE ledger."""
