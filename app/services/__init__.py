"""Service layer: billing, entitlements, subscriptions and notifications."""
